"""Header helpers for the HTTP layer tests.

The client fixture lives in tests/conftest.py so the contract tests share it.
"""

ADMIN_HEADERS = {"X-Actor-Role": "admin", "X-Actor-Id": "ops-1"}
SYSTEM_HEADERS = {"X-Actor-Role": "system"}


def headers(role: str, ref: str | None = None) -> dict[str, str]:
    result = {"X-Actor-Role": role}
    if ref:
        result["X-Actor-Id"] = ref
    return result
