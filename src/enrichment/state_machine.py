"""Contact reveal as a bounded initiate-then-poll state machine.

INITIATED -> POLLING -> FOUND | PARTIAL | NOT_FOUND | TIMEOUT, with ERROR
reachable from anywhere before polling starts. Every request is cut off after
``timeout_s`` and polling stops at ``deadline_s``, whichever of that and the
attempt budget comes first.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

import httpx

from src.core.config import EnrichmentConfig
from src.core.errors import InvalidInputError
from src.core.schemas import ContactType, EnrichmentJob, EnrichmentResult, EnrichmentState
from src.enrichment.extract import PollSnapshot, parse_poll_payload
from src.enrichment.provider import EnrichmentProvider

logger = logging.getLogger(__name__)

EMAIL_CREDITS = 1
PHONE_CREDITS = 2

Sleep = Callable[[float], Awaitable[None]]


def credits_for(contact_type: ContactType, emails: list[str], phones: list[str]) -> int:
    credits = 0
    if contact_type.wants_email and emails:
        credits += EMAIL_CREDITS
    if contact_type.wants_phone and phones:
        credits += PHONE_CREDITS
    return credits


def missing_types(contact_type: ContactType, snapshot: PollSnapshot) -> list[str]:
    missing: list[str] = []
    if contact_type.wants_email and not snapshot.emails:
        missing.append("email")
    if contact_type.wants_phone and not snapshot.phones:
        missing.append("phone")
    return missing


def settle(
    profile_url: str, contact_type: ContactType, snapshot: PollSnapshot, attempts: int
) -> EnrichmentResult | None:
    """The terminal result this snapshot implies, or None to keep polling."""
    missing = missing_types(contact_type, snapshot)
    requested = 2 if contact_type == ContactType.BOTH else 1

    if not missing:
        state = EnrichmentState.FOUND
    elif not snapshot.completed:
        return None
    elif len(missing) < requested:
        state = EnrichmentState.PARTIAL
    else:
        state = EnrichmentState.NOT_FOUND

    emails = snapshot.emails if contact_type.wants_email else []
    phones = snapshot.phones if contact_type.wants_phone else []
    return EnrichmentResult(
        profile_url=profile_url,
        contact_type=contact_type,
        state=state,
        emails=emails,
        phones=phones,
        missing=missing,
        job_status=snapshot.status,
        credits_used=credits_for(contact_type, emails, phones),
        attempts=attempts,
        error=(
            f"No {' or '.join(missing)} found for this LinkedIn profile"
            if state == EnrichmentState.NOT_FOUND
            else None
        ),
    )


async def _poll_once(
    provider: EnrichmentProvider, job: EnrichmentJob, timeout_s: float
) -> PollSnapshot | None:
    """One poll. None means the attempt was wasted (timeout, transport error, non-2xx, bad body)."""
    try:
        response = await asyncio.wait_for(provider.poll(job), timeout_s)
    except TimeoutError:
        logger.warning("Enrichment %s poll timed out after %.1fs", job.enrichment_id, timeout_s)
        return None
    except httpx.HTTPError as e:
        logger.warning("Enrichment %s poll failed: %s", job.enrichment_id, e)
        return None
    if not response.is_success:
        logger.warning("Enrichment %s poll returned HTTP %d", job.enrichment_id, response.status_code)
        return None
    try:
        payload = response.json()
    except ValueError:
        logger.warning("Enrichment %s poll body is not JSON", job.enrichment_id)
        return None
    return parse_poll_payload(payload)


async def reveal_contact(
    provider: EnrichmentProvider,
    profile_url: str,
    contact_type: ContactType | str = ContactType.EMAIL,
    config: EnrichmentConfig | None = None,
    *,
    sleep: Sleep = asyncio.sleep,
) -> EnrichmentResult:
    """Reveal email and/or phone for one profile. Never raises."""
    config = config or EnrichmentConfig()
    try:
        contact_type = ContactType(contact_type)
    except ValueError:
        return EnrichmentResult(
            profile_url=profile_url or "",
            contact_type=ContactType.EMAIL,
            state=EnrichmentState.ERROR,
            error=f"Unknown contact type '{contact_type}'",
        )

    def error(message: str, attempts: int = 0) -> EnrichmentResult:
        return EnrichmentResult(
            profile_url=profile_url or "",
            contact_type=contact_type,
            state=EnrichmentState.ERROR,
            attempts=attempts,
            error=message,
        )

    loop = asyncio.get_running_loop()
    deadline = loop.time() + config.deadline_s
    try:
        if not profile_url or not profile_url.strip():
            msg = "Valid LinkedIn URL is required"
            raise InvalidInputError(msg)
        job = await asyncio.wait_for(
            provider.initiate(profile_url.strip(), contact_type), config.timeout_s,
        )
    except TimeoutError:
        logger.error("Enrichment for %s timed out while starting", profile_url)
        return error(f"Enrichment request timed out after {config.timeout_s:g} seconds")
    except Exception as e:
        logger.error("Enrichment for %s could not start: %s", profile_url, e)
        return error(str(e) or type(e).__name__)

    logger.info(
        "Enrichment %s initiated for %s (%s)", job.enrichment_id, profile_url, contact_type,
    )
    await sleep(config.warmup_s)

    attempts = 0
    while attempts < config.max_attempts:
        remaining = deadline - loop.time()
        if remaining <= 0:
            logger.warning("Enrichment %s hit its %gs deadline", job.enrichment_id, config.deadline_s)
            break
        attempts += 1
        logger.debug("Enrichment %s poll %d/%d", job.enrichment_id, attempts, config.max_attempts)
        try:
            snapshot = await _poll_once(provider, job, min(config.timeout_s, remaining))
        except Exception as e:
            # Credentials vanished mid-poll or the provider is otherwise unusable.
            logger.error("Enrichment %s failed while polling", job.enrichment_id, exc_info=True)
            return error(str(e) or type(e).__name__, attempts)

        if snapshot is not None:
            result = settle(profile_url, contact_type, snapshot, attempts)
            if result is not None:
                logger.info(
                    "Enrichment %s finished: %s after %d polls", job.enrichment_id, result.state, attempts,
                )
                return result

        if attempts < config.max_attempts:
            await sleep(config.poll_interval_s)

    budget = config.max_attempts * config.poll_interval_s
    logger.warning("Enrichment %s timed out after %d polls", job.enrichment_id, attempts)
    return EnrichmentResult(
        profile_url=profile_url,
        contact_type=contact_type,
        state=EnrichmentState.TIMEOUT,
        attempts=attempts,
        error=f"Enrichment timeout after {budget:.0f} seconds - please try again",
    )


async def reveal_contacts_batch(
    provider: EnrichmentProvider,
    profile_urls: list[str],
    contact_type: ContactType | str = ContactType.EMAIL,
    config: EnrichmentConfig | None = None,
    *,
    sleep: Sleep = asyncio.sleep,
) -> list[EnrichmentResult]:
    """Reveal contacts for many profiles concurrently, in input order."""
    return list(
        await asyncio.gather(
            *(
                reveal_contact(provider, url, contact_type, config, sleep=sleep)
                for url in profile_urls
            )
        )
    )
