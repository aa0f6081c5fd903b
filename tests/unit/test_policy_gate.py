import pytest

from meetbridge_backend.app.auth.identity import IdentityClaims
from meetbridge_backend.app.auth.policy import (
    OpenAllowList,
    SqlAllowList,
    StaticAllowList,
    build_allow_list,
    enforce_policy,
)
from meetbridge_backend.app.core.errors import AuthFlowError, ErrorCategory, ErrorKind
from meetbridge_backend.app.db.models import AllowedEmail
from meetbridge_backend.app.db.session import make_engine, make_sessionmaker

pytestmark = pytest.mark.anyio


class SpyAllowList:
    def __init__(self, result=True, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def is_allowed(self, email):
        self.calls.append(email)
        if self.error is not None:
            raise self.error
        return self.result


def _claims(email="tester@example.com", verified=True) -> IdentityClaims:
    return IdentityClaims(subject_id="sub-1", display_name="Tess", email=email, email_verified=verified)


async def test_static_list_matches_addresses_and_domains():
    allow = StaticAllowList(["Tester@Example.com", "*@corp.example", " "])

    assert await allow.is_allowed("tester@example.com")
    assert await allow.is_allowed("TESTER@example.com ")
    assert await allow.is_allowed("anyone@corp.example")
    assert not await allow.is_allowed("anyone@sub.corp.example")
    assert not await allow.is_allowed("other@example.com")
    assert not await allow.is_allowed("")


async def test_open_list_requires_an_email():
    allow = OpenAllowList()
    assert await allow.is_allowed("x@y.z")
    assert not await allow.is_allowed("")


async def test_allowed_and_verified_passes():
    spy = SpyAllowList(result=True)
    await enforce_policy(_claims(), spy)
    assert spy.calls == ["tester@example.com"]


async def test_not_allowed_short_circuits_before_verification():
    # unverified as well: the verification check must never be reached
    claims = _claims(email="nope@example.com", verified=False)

    with pytest.raises(AuthFlowError) as ei:
        await enforce_policy(claims, SpyAllowList(result=False))

    assert ei.value.kind == ErrorKind.EMAIL_NOT_ALLOWED
    assert ei.value.category == ErrorCategory.POLICY
    assert ei.value.status_code == 400


async def test_unverified_email_is_rejected():
    with pytest.raises(AuthFlowError) as ei:
        await enforce_policy(_claims(verified=False), SpyAllowList(result=True))
    assert ei.value.kind == ErrorKind.EMAIL_NOT_VERIFIED
    assert ei.value.status_code == 400
    assert ei.value.context["sub"] == "sub-1"


async def test_lookup_failure_is_distinct_from_not_found():
    with pytest.raises(AuthFlowError) as ei:
        await enforce_policy(_claims(), SpyAllowList(error=RuntimeError("db down")))
    assert ei.value.kind == ErrorKind.ALLOW_LIST_CHECK_FAILED
    assert ei.value.category == ErrorCategory.INTERNAL
    assert ei.value.status_code == 500


async def test_sql_allow_list(sql_sessionmaker):
    async with sql_sessionmaker() as db:
        async with db.begin():
            db.add(AllowedEmail(email="tester@example.com"))

    allow = SqlAllowList(sql_sessionmaker)
    assert await allow.is_allowed("Tester@Example.com")
    assert not await allow.is_allowed("stranger@example.com")


async def test_sql_allow_list_without_table_fails_the_check(settings):
    engine = make_engine(settings)  # tables never created
    try:
        allow = SqlAllowList(make_sessionmaker(engine))
        with pytest.raises(AuthFlowError) as ei:
            await allow.is_allowed("tester@example.com")
        assert ei.value.kind == ErrorKind.ALLOW_LIST_CHECK_FAILED
    finally:
        await engine.dispose()


async def test_build_allow_list_modes(settings):
    assert isinstance(build_allow_list(settings, None), StaticAllowList)
    assert isinstance(build_allow_list(settings.model_copy(update={"allow_list_mode": "open"}), None), OpenAllowList)
    assert isinstance(build_allow_list(settings.model_copy(update={"allow_list_mode": "db"}), None), SqlAllowList)
    with pytest.raises(ValueError):
        build_allow_list(settings.model_copy(update={"allow_list_mode": "bogus"}), None)
