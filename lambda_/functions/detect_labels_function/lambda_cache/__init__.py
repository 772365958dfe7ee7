from typing import List


# Survives between warm invocations of the same execution environment.
_invocation_ids: List[str] = []


def initialize_invocation(context) -> None:
    """Remember the request id of the invocation that is starting."""
    request_id = getattr(context, "aws_request_id", None)
    if request_id:
        _invocation_ids.append(request_id.lower())


def get_invocation_ids() -> List[str]:
    return list(_invocation_ids)


def is_cold_start() -> bool:
    # Our own id is the only one recorded on the first invocation.
    return len(_invocation_ids) <= 1


def reset() -> None:
    _invocation_ids.clear()
