from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings

SALARY_SIMULATION = "salary-simulation"
BUDGET_SCENARIO = "budget-scenario"


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.confirm_secret, salt="apply-confirmation")


def issue_apply_token(user_id: int, kind: str, target_id: int) -> str:
    """Signed proof that the user asked to apply ``kind`` ``target_id`` to real budgets."""
    return _serializer().dumps({"u": user_id, "k": kind, "id": target_id})


def validate_apply_token(
    token: Optional[str],
    user_id: int,
    kind: str,
    target_id: int,
    max_age_secs: Optional[int] = None,
) -> bool:
    if not token:
        return False
    max_age = max_age_secs if max_age_secs is not None else get_settings().confirm_max_age_secs
    try:
        data = _serializer().loads(token, max_age=max_age)
    except BadSignature:
        return False

    if not isinstance(data, dict):
        return False
    return data.get("u") == user_id and data.get("k") == kind and data.get("id") == target_id
