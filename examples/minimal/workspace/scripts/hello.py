"""GET /api/hello/{name}"""


def get(args):
    greeting = (args.options or {}).get('greeting', 'Hello')
    args.logger.info('greeting', name=args.params['name'])
    return {'message': f"{greeting}, {args.params['name']}!", 'site': args.globals['site']}
