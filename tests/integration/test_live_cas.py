from __future__ import annotations

import logging
import os

import pytest

from gatekeeper_bot.adapters.cas import CASReputationChecker


logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")


pytestmark = pytest.mark.skipif(
    not os.getenv("RUN_LIVE_TESTS"),
    reason="Set RUN_LIVE_TESTS=1 to execute tests against the real CAS API.",
)


@pytest.mark.asyncio
async def test_live_cas_lookup_for_unknown_user() -> None:
    checker = CASReputationChecker(base_url=os.getenv("GATEKEEPER_REPUTATION__BASE_URL", "https://api.cas.chat"))
    try:
        # Telegram's own service account; never listed by CAS.
        banned = await checker.is_banned(777000)
        logger.info("CAS answered banned=%s for user 777000", banned)
    finally:
        await checker.close()
    assert banned is False


@pytest.mark.asyncio
async def test_live_cas_lookup_for_listed_user() -> None:
    user_id = os.getenv("CAS_KNOWN_BANNED_USER_ID")
    if not user_id:
        raise pytest.SkipTest("CAS_KNOWN_BANNED_USER_ID env variable is required for this test.")
    checker = CASReputationChecker()
    try:
        banned = await checker.is_banned(int(user_id))
    finally:
        await checker.close()
    assert banned is True
