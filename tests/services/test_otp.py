"""OTP engine tests, run against both the in-memory and SQL stores."""

import asyncio
from itertools import count

import pytest
from sqlmodel import select

from tests.conftest import RecordingSmsBackend
from usersvc.errors import InvalidCode, InvalidPhone, Locked, OtpExpired, OtpNotFound, RateLimited
from usersvc.models import OtpRecord, OtpStatus
from usersvc.services.hashing import hash_otp
from usersvc.services.otp import OtpConfig, OtpService
from usersvc.services.otp_store import InMemoryOtpStore, OtpKey, SqlOtpStore
from usersvc.services.sms import SmsBackend, SmsResult

PHONE = "+251911223344"
START_MS = 1_700_000_000_000


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


def sequential_codes():
    counter = count(1)
    return lambda length: str(next(counter)).zfill(length)


@pytest.fixture(params=["memory", "sql"])
def store(request, session):
    if request.param == "memory":
        return InMemoryOtpStore()
    return SqlOtpStore(session)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sms() -> RecordingSmsBackend:
    return RecordingSmsBackend()


@pytest.fixture
def config() -> OtpConfig:
    return OtpConfig(echo_codes=True)


@pytest.fixture
def service(store, sms, config, clock) -> OtpService:
    return OtpService(store, sms, config, clock=clock, code_generator=sequential_codes())


class TestGenerateAndSend:
    @pytest.mark.asyncio
    async def test_issues_and_delivers_code(self, service: OtpService, sms: RecordingSmsBackend):
        issue = await service.generate_and_send("0911223344")

        assert issue.phone == PHONE
        assert issue.sent is True
        assert issue.expires_in == 300
        assert issue.code == "000001"
        assert sms.messages == [(PHONE, service.render_message("000001"))]
        assert "000001" in sms.messages[0][1]
        assert "EthioConnect" in sms.messages[0][1]

    @pytest.mark.asyncio
    async def test_stores_only_a_hash(self, service: OtpService, store):
        await service.generate_and_send(PHONE)

        record = await store.find_latest_open(OtpKey(PHONE))
        assert record is not None
        assert record.hashed_secret != "000001"
        assert record.attempts == 0
        assert record.status == OtpStatus.PENDING.value
        assert record.expires_at == START_MS + 300_000

    @pytest.mark.asyncio
    async def test_code_not_echoed_when_disabled(self, store, sms, clock):
        service = OtpService(store, sms, OtpConfig(echo_codes=False), clock=clock)
        issue = await service.generate_and_send(PHONE)
        assert issue.code is None

    @pytest.mark.asyncio
    async def test_leading_zero_codes_are_kept(self, store, sms, clock, config):
        service = OtpService(store, sms, config, clock=clock, code_generator=lambda n: "012345")
        await service.generate_and_send(PHONE)

        verified = await service.verify(PHONE, "012345")
        assert verified.verified is True

    @pytest.mark.asyncio
    async def test_rejects_invalid_phone(self, service: OtpService, sms: RecordingSmsBackend):
        with pytest.raises(InvalidPhone):
            await service.generate_and_send("12345")
        assert sms.messages == []

    @pytest.mark.asyncio
    async def test_cooldown(self, service: OtpService, clock: FakeClock):
        await service.generate_and_send(PHONE)
        clock.advance(10)

        with pytest.raises(RateLimited) as exc_info:
            await service.generate_and_send(PHONE)
        assert exc_info.value.retry_after == 20
        assert exc_info.value.status_code == 429

        clock.advance(21)
        issue = await service.generate_and_send(PHONE)
        assert issue.code == "000002"

    @pytest.mark.asyncio
    async def test_new_request_supersedes_pending_code(self, store, sms, clock):
        service = OtpService(
            store,
            sms,
            OtpConfig(cooldown_seconds=0, echo_codes=True),
            clock=clock,
            code_generator=sequential_codes(),
        )
        await service.generate_and_send(PHONE)
        clock.advance(1)
        await service.generate_and_send(PHONE)

        with pytest.raises(InvalidCode):
            await service.verify(PHONE, "000001")
        assert (await service.verify(PHONE, "000002")).verified is True

    @pytest.mark.asyncio
    async def test_delivery_failure_still_issues_code(self, store, clock, config):
        class FailingSms(SmsBackend):
            async def send(self, phone: str, message: str) -> SmsResult:
                raise ConnectionError("gateway down")

        service = OtpService(
            store, FailingSms(), config, clock=clock, code_generator=lambda n: "654321"
        )
        issue = await service.generate_and_send(PHONE)

        assert issue.sent is False
        assert "gateway down" in issue.provider_info["error"]
        assert (await service.verify(PHONE, "654321")).verified is True

    @pytest.mark.asyncio
    async def test_rejected_delivery_reports_not_sent(self, service: OtpService, sms):
        sms.success = False
        issue = await service.generate_and_send(PHONE)
        assert issue.sent is False
        assert issue.provider_info == {"provider": "recording"}

    @pytest.mark.asyncio
    async def test_delivery_timeout_is_bounded(self, store, clock):
        class SlowSms(SmsBackend):
            async def send(self, phone: str, message: str) -> SmsResult:
                await asyncio.sleep(5)
                return SmsResult(success=True)

        service = OtpService(
            store, SlowSms(), OtpConfig(sms_timeout_seconds=0.05), clock=clock
        )
        issue = await service.generate_and_send(PHONE)

        assert issue.sent is False
        assert issue.provider_info == {"error": "SMS delivery timed out"}
        assert await store.find_latest_open(OtpKey(PHONE)) is not None


class TestVerify:
    @pytest.mark.asyncio
    async def test_success_consumes_code(self, service: OtpService, store):
        await service.generate_and_send(PHONE)

        result = await service.verify("0911223344", "000001")
        assert result.verified is True
        assert result.phone == PHONE

        assert await store.find_latest_open(OtpKey(PHONE)) is None
        with pytest.raises(OtpNotFound):
            await service.verify(PHONE, "000001")

    @pytest.mark.asyncio
    async def test_no_code_issued(self, service: OtpService):
        with pytest.raises(OtpNotFound) as exc_info:
            await service.verify(PHONE, "123456")
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_wrong_code_counts_down(self, service: OtpService, store):
        await service.generate_and_send(PHONE)

        with pytest.raises(InvalidCode) as first:
            await service.verify(PHONE, "999999")
        assert first.value.attempts_remaining == 2
        assert first.value.details == {"attemptsRemaining": 2}

        with pytest.raises(InvalidCode) as second:
            await service.verify(PHONE, "999999")
        assert second.value.attempts_remaining == 1

        record = await store.find_latest_open(OtpKey(PHONE))
        assert record.attempts == 2

    @pytest.mark.asyncio
    async def test_correct_code_on_final_attempt(self, service: OtpService):
        await service.generate_and_send(PHONE)
        for _ in range(2):
            with pytest.raises(InvalidCode):
                await service.verify(PHONE, "999999")

        assert (await service.verify(PHONE, "000001")).verified is True

    @pytest.mark.asyncio
    async def test_lockout_after_max_attempts(self, service: OtpService, store, clock: FakeClock):
        await service.generate_and_send(PHONE)
        for _ in range(2):
            with pytest.raises(InvalidCode):
                await service.verify(PHONE, "999999")

        with pytest.raises(Locked) as exc_info:
            await service.verify(PHONE, "999999")
        assert exc_info.value.status_code == 429
        assert "30 minutes" in exc_info.value.message
        assert exc_info.value.retry_after == 1800

        record = await store.find_latest_open(OtpKey(PHONE))
        assert record.status == OtpStatus.LOCKED.value
        assert record.attempts == 3
        assert record.expires_at == START_MS + 1800 * 1000

        # The right code does not help while locked
        with pytest.raises(Locked):
            await service.verify(PHONE, "000001")
        # Nor does asking for a new one
        clock.advance(60)
        with pytest.raises(Locked):
            await service.generate_and_send(PHONE)

    @pytest.mark.asyncio
    async def test_lock_ends_after_window(self, service: OtpService, clock: FakeClock):
        await service.generate_and_send(PHONE)
        for _ in range(3):
            with pytest.raises((InvalidCode, Locked)):
                await service.verify(PHONE, "999999")

        clock.advance(1800)
        with pytest.raises(Locked):
            await service.generate_and_send(PHONE)

        clock.advance(1)
        with pytest.raises(OtpNotFound):
            await service.verify(PHONE, "000001")

        issue = await service.generate_and_send(PHONE)
        assert (await service.verify(PHONE, issue.code)).verified is True

    @pytest.mark.asyncio
    async def test_valid_exactly_at_expiry(self, service: OtpService, clock: FakeClock):
        await service.generate_and_send(PHONE)
        clock.advance(300)
        assert (await service.verify(PHONE, "000001")).verified is True

    @pytest.mark.asyncio
    async def test_expired_after_expiry(self, service: OtpService, store, clock: FakeClock):
        await service.generate_and_send(PHONE)
        clock.advance(300)
        clock.now += 1

        with pytest.raises(OtpExpired):
            await service.verify(PHONE, "000001")

        # Expired records are closed, so nothing is left to verify
        assert await store.find_latest_open(OtpKey(PHONE)) is None
        with pytest.raises(OtpNotFound):
            await service.verify(PHONE, "000001")

    @pytest.mark.asyncio
    async def test_reference_scopes_are_separate(self, service: OtpService):
        await service.generate_and_send(PHONE, reference_type="User", reference_id="a")

        with pytest.raises(OtpNotFound):
            await service.verify(PHONE, "000001", reference_type="User", reference_id="b")

        result = await service.verify(PHONE, "000001", reference_type="User", reference_id="a")
        assert result.reference_type == "User"
        assert result.reference_id == "a"

    @pytest.mark.asyncio
    async def test_custom_message_template(self, service: OtpService, sms: RecordingSmsBackend):
        await service.generate_and_send(PHONE, message_template="Code {code} for {company}")
        assert sms.messages[0][1] == "Code 000001 for EthioConnect"


class TestCleanup:
    @pytest.mark.asyncio
    async def test_removes_expired_records(self, service: OtpService, store, clock: FakeClock):
        await service.generate_and_send(PHONE)
        await service.generate_and_send("+251922334455")
        clock.advance(301)

        removed = await service.cleanup_expired()

        assert removed == 2
        assert await store.find_latest_open(OtpKey(PHONE)) is None

    @pytest.mark.asyncio
    async def test_keeps_live_records(self, service: OtpService, store):
        await service.generate_and_send(PHONE)
        assert await service.cleanup_expired() == 0
        assert await store.find_latest_open(OtpKey(PHONE)) is not None


@pytest.mark.asyncio
async def test_sql_store_keeps_one_pending_row(session, sms, clock):
    service = OtpService(
        SqlOtpStore(session),
        sms,
        OtpConfig(cooldown_seconds=0),
        clock=clock,
    )
    for _ in range(3):
        await service.generate_and_send(PHONE)
        clock.advance(1)

    result = await session.execute(
        select(OtpRecord).where(OtpRecord.status == OtpStatus.PENDING.value)
    )
    assert len(result.scalars().all()) == 1


@pytest.mark.asyncio
async def test_sql_store_concurrent_issue_is_rate_limited(session):
    store = SqlOtpStore(session)
    key = OtpKey(PHONE, "User", "a")

    # A pending row for the same scope committed by a concurrent issuer,
    # out of reach of this key's delete
    other = key.new_record(
        hashed_secret=hash_otp("111111"),
        issued_at=START_MS,
        expires_at=START_MS + 300_000,
    )
    other.phone = "+251922334455"
    session.add(other)
    await session.commit()

    record = key.new_record(
        hashed_secret=hash_otp("222222"),
        issued_at=START_MS,
        expires_at=START_MS + 300_000,
    )
    with pytest.raises(RateLimited):
        await store.replace_pending(key, record)

    # The session was rolled back and is still usable
    result = await session.execute(
        select(OtpRecord.hashed_secret).where(OtpRecord.status == OtpStatus.PENDING.value)
    )
    assert result.scalars().all() == [hash_otp("111111")]
