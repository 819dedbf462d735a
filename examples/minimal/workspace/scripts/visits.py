"""Counts visits overall and per user."""


def get(args):
    args.state['total'] += 1
    mine = args.user.get('visits', 0) + 1
    args.user.set('visits', mine)
    return {'total': args.state['total'], 'mine': mine}


def delete(args):
    if args.user.is_guest:
        return args.send_forbidden()
    args.state['total'] = 0
    return {'total': 0}
