"""Rejects clients listed in ``globals.blocked``."""


def validate(args):
    blocked = (args.globals or {}).get('blocked', [])
    return args.value.address not in blocked
