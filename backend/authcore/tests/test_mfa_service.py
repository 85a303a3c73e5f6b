"""Tests for the MFA enrolment state machine."""

from __future__ import annotations

import pytest

from backend.authcore.app.crypto import MfaSecretCipher
from backend.authcore.app.errors import InvalidMfaCode, MfaNotSetUp
from backend.authcore.app.mfa_service import MfaService, MfaState
from backend.authcore.db.models import AccountMfa
from backend.authcore.tests.utils import create_account, current_code


@pytest.fixture()
def mfa_service(db_session, cipher, totp) -> MfaService:
    return MfaService(db_session, cipher=cipher, totp=totp, issuer="Fortalis")


@pytest.mark.asyncio
async def test_setup_stores_encrypted_secret_and_stays_disabled(db_session, mfa_service, cipher):
    account = await create_account(db_session)

    setup = await mfa_service.setup_totp(account.id, label=account.email)

    record = await db_session.get(AccountMfa, account.id)
    assert record is not None
    assert record.enabled is False
    assert cipher.is_encrypted(record.secret)
    assert setup.secret not in record.secret
    assert cipher.decrypt(record.secret) == setup.secret
    assert len(setup.backup_codes) == 10
    assert setup.otpauth_url.startswith("otpauth://totp/Fortalis:player%40example.com?secret=")
    assert await mfa_service.status(account.id) is MfaState.PENDING_ENABLE


@pytest.mark.asyncio
async def test_enable_requires_setup(db_session, mfa_service):
    account = await create_account(db_session)

    with pytest.raises(MfaNotSetUp):
        await mfa_service.enable_totp(account.id, "123456")
    assert await mfa_service.status(account.id) is MfaState.NO_MFA


@pytest.mark.asyncio
async def test_enable_with_wrong_code_keeps_pending(db_session, mfa_service):
    account = await create_account(db_session)
    setup = await mfa_service.setup_totp(account.id)
    wrong = f"{(int(current_code(setup.secret)) + 500_000) % 1_000_000:06d}"

    with pytest.raises(InvalidMfaCode):
        await mfa_service.enable_totp(account.id, wrong)
    assert not await mfa_service.is_enabled(account.id)


@pytest.mark.asyncio
async def test_enable_then_disable(db_session, mfa_service):
    account = await create_account(db_session)
    setup = await mfa_service.setup_totp(account.id)

    await mfa_service.enable_totp(account.id, f" {current_code(setup.secret)} ")
    assert await mfa_service.status(account.id) is MfaState.ENABLED

    await mfa_service.disable_totp(account.id, current_code(setup.secret))
    assert await mfa_service.status(account.id) is MfaState.PENDING_ENABLE
    assert not await mfa_service.verify(account.id, current_code(setup.secret))


@pytest.mark.asyncio
async def test_disable_requires_valid_code(db_session, mfa_service):
    account = await create_account(db_session)
    setup = await mfa_service.setup_totp(account.id)
    await mfa_service.enable_totp(account.id, current_code(setup.secret))

    with pytest.raises(InvalidMfaCode):
        await mfa_service.disable_totp(account.id, "not-a-code")
    assert await mfa_service.is_enabled(account.id)


@pytest.mark.asyncio
async def test_verify_accepts_totp_and_single_use_backup_codes(db_session, mfa_service):
    account = await create_account(db_session)
    setup = await mfa_service.setup_totp(account.id)
    await mfa_service.enable_totp(account.id, current_code(setup.secret))

    assert await mfa_service.verify(account.id, current_code(setup.secret))
    assert await mfa_service.verify(account.id, setup.backup_codes[0])
    assert not await mfa_service.verify(account.id, setup.backup_codes[0])


@pytest.mark.asyncio
@pytest.mark.parametrize("code", [None, "", "   "])
async def test_verify_rejects_blank_codes(db_session, mfa_service, code):
    account = await create_account(db_session)
    setup = await mfa_service.setup_totp(account.id)
    await mfa_service.enable_totp(account.id, current_code(setup.secret))

    assert not await mfa_service.verify(account.id, code)


@pytest.mark.asyncio
async def test_single_factor_checks_do_not_cross(db_session, mfa_service):
    account = await create_account(db_session)
    setup = await mfa_service.setup_totp(account.id)
    await mfa_service.enable_totp(account.id, current_code(setup.secret))

    assert not await mfa_service.verify_totp(account.id, setup.backup_codes[0])
    assert not await mfa_service.redeem_backup_code(account.id, current_code(setup.secret))
    assert await mfa_service.verify_totp(account.id, current_code(setup.secret))
    assert await mfa_service.redeem_backup_code(account.id, setup.backup_codes[0])
    assert not await mfa_service.redeem_backup_code(account.id, setup.backup_codes[0])


@pytest.mark.asyncio
async def test_backup_codes_are_not_redeemable_while_pending(db_session, mfa_service):
    account = await create_account(db_session)
    setup = await mfa_service.setup_totp(account.id)

    assert not await mfa_service.redeem_backup_code(account.id, setup.backup_codes[0])
    assert not await mfa_service.verify_totp(account.id, current_code(setup.secret))


@pytest.mark.asyncio
async def test_verify_is_false_while_pending(db_session, mfa_service):
    account = await create_account(db_session)
    setup = await mfa_service.setup_totp(account.id)

    assert not await mfa_service.verify(account.id, current_code(setup.secret))
    assert not await mfa_service.verify(account.id, setup.backup_codes[0])


@pytest.mark.asyncio
async def test_setup_again_replaces_secret_and_codes(db_session, mfa_service):
    account = await create_account(db_session)
    first = await mfa_service.setup_totp(account.id)
    await mfa_service.enable_totp(account.id, current_code(first.secret))

    second = await mfa_service.setup_totp(account.id)

    assert second.secret != first.secret
    assert await mfa_service.status(account.id) is MfaState.PENDING_ENABLE
    await mfa_service.enable_totp(account.id, current_code(second.secret))
    stale = next(code for code in first.backup_codes if code not in second.backup_codes)
    assert not await mfa_service.verify(account.id, stale)


@pytest.mark.asyncio
async def test_passthrough_cipher_stores_plaintext_secret(db_session, totp):
    service = MfaService(db_session, cipher=MfaSecretCipher.passthrough(), totp=totp)
    account = await create_account(db_session)

    setup = await service.setup_totp(account.id)

    record = await db_session.get(AccountMfa, account.id)
    assert record is not None
    assert record.secret == setup.secret
