"""
Tests for key resolution: expiry, password gating, UTM handling and
click publication.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qsl, urlsplit

import pytest

from clickpipe_app.cache.strategies import InMemoryCache
from clickpipe_app.errors import NotFound, Unauthorized
from clickpipe_app.models.link import Link
from clickpipe_app.queue.producer import ClickEventProducer
from clickpipe_app.queue.strategies import InMemoryQueue
from clickpipe_app.schemas.link import CallerIdentity, ClientDetails, CreateLinkRequest
from clickpipe_app.services.link_resolver import LinkResolver, add_utm_params
from clickpipe_app.services.link_service import LinkService

OWNER = CallerIdentity(owner_id="user-1", verified=True)


class ExplodingQueue(InMemoryQueue):
    def publish(self, message):
        raise RuntimeError("broker on fire")


def make_resolver(db_session, config, queue=None, cache=None):
    queue = queue or InMemoryQueue(capacity=10)
    producer = ClickEventProducer(queue)
    return LinkResolver(db_session, config, producer=producer, cache=cache), producer, queue


def create(db_session, config, **fields):
    fields.setdefault("url", "https://example.com")
    return LinkService(db_session, config).create_link(CreateLinkRequest(**fields), OWNER)


class TestResolve:

    def test_resolves_destination_and_key(self, db_session, config):
        create(db_session, config, key="abc1")
        resolver, _, _ = make_resolver(db_session, config)

        resolved = asyncio.run(resolver.resolve("abc1"))

        assert resolved.url == "https://example.com"
        assert resolved.key == "abc1"

    def test_expired_link_is_indistinguishable_from_missing(self, db_session, config):
        past = datetime.now(timezone.utc) - timedelta(minutes=1)
        db_session.add(Link(key="old1", destination_url="https://example.com", expires_at=past))
        db_session.commit()
        resolver, _, _ = make_resolver(db_session, config)

        with pytest.raises(NotFound) as expired:
            asyncio.run(resolver.resolve("old1"))
        with pytest.raises(NotFound) as missing:
            asyncio.run(resolver.resolve("nope"))

        assert type(expired.value) is type(missing.value)
        assert expired.value.message == missing.value.message

    def test_link_resolves_until_expiry(self, db_session, config):
        expires = datetime(2030, 1, 1, tzinfo=timezone.utc)
        create(db_session, config, key="soon", expires_at=expires)
        resolver, _, _ = make_resolver(db_session, config)

        asyncio.run(resolver.resolve("soon", now=expires - timedelta(seconds=1)))
        with pytest.raises(NotFound):
            asyncio.run(resolver.resolve("soon", now=expires))

    def test_wrong_password_is_unauthorized(self, db_session, config):
        create(db_session, config, key="secret", password="hunter2")
        resolver, producer, _ = make_resolver(db_session, config)

        with pytest.raises(Unauthorized):
            asyncio.run(resolver.resolve("secret", password="wrong"))
        with pytest.raises(Unauthorized):
            asyncio.run(resolver.resolve("secret"))

        # Failed resolutions are not clicks
        assert producer.stats()["accepted"] == 0

    def test_correct_password_resolves(self, db_session, config):
        create(db_session, config, key="secret", password="hunter2", url="https://private.example/doc")
        resolver, _, _ = make_resolver(db_session, config)

        resolved = asyncio.run(resolver.resolve("secret", password="hunter2"))

        assert resolved.url == "https://private.example/doc"

    def test_password_is_stored_hashed(self, db_session, config):
        link = create(db_session, config, key="secret", password="hunter2")
        assert link.password_hash and "hunter2" not in link.password_hash


class TestUtmParams:

    def test_only_present_params_are_appended(self, db_session, config):
        create(db_session, config, key="utm1", url="https://example.com/page?x=1",
               utm_source="newsletter", utm_medium="", utm_campaign="spring")
        resolver, _, _ = make_resolver(db_session, config)

        url = asyncio.run(resolver.resolve("utm1")).url
        query = parse_qsl(urlsplit(url).query, keep_blank_values=True)

        assert query == [("x", "1"), ("utm_source", "newsletter"), ("utm_campaign", "spring")]

    def test_no_params_leaves_url_untouched(self):
        assert add_utm_params("https://example.com", {"utm_source": None, "utm_term": ""}) == "https://example.com"


class TestClickPublication:

    def test_successful_resolve_publishes_one_event(self, db_session, config):
        create(db_session, config, key="abc1")
        resolver, producer, queue = make_resolver(db_session, config)
        client = ClientDetails(ip_address="81.2.69.142", user_agent="curl/8.0", referer="https://t.co")

        asyncio.run(resolver.resolve("abc1", client=client))

        events = asyncio.run(queue.consume(batch_size=10))
        assert producer.stats() == {"accepted": 1, "dropped": 0}
        assert len(events) == 1
        assert events[0].link_key == "abc1"
        assert events[0].ip_address == "81.2.69.142"
        assert events[0].referer == "https://t.co"

    def test_missing_key_publishes_nothing(self, db_session, config):
        resolver, producer, _ = make_resolver(db_session, config)

        with pytest.raises(NotFound):
            asyncio.run(resolver.resolve("nope"))
        assert producer.stats()["accepted"] == 0

    def test_publish_failure_does_not_affect_resolution(self, db_session, config):
        create(db_session, config, key="abc1")
        resolver, producer, _ = make_resolver(db_session, config, queue=ExplodingQueue())

        resolved = asyncio.run(resolver.resolve("abc1"))

        assert resolved.url == "https://example.com"
        assert producer.stats()["dropped"] == 1

    def test_full_channel_does_not_affect_resolution(self, db_session, config):
        create(db_session, config, key="abc1")
        resolver, producer, _ = make_resolver(db_session, config, queue=InMemoryQueue(capacity=1))

        for _ in range(5):
            assert asyncio.run(resolver.resolve("abc1")).key == "abc1"
        assert producer.stats() == {"accepted": 1, "dropped": 4}


class TestCacheAside:

    def test_second_resolve_is_served_from_cache(self, db_session, config):
        create(db_session, config, key="abc1")
        cache = InMemoryCache()
        resolver, _, _ = make_resolver(db_session, config, cache=cache)

        asyncio.run(resolver.resolve("abc1"))
        assert asyncio.run(cache.get(LinkResolver.cache_key("abc1"))) is not None

        # Change the row behind the cache's back; the snapshot still answers
        db_session.query(Link).filter(Link.key == "abc1").update({"destination_url": "https://other.example"})
        db_session.commit()
        assert asyncio.run(resolver.resolve("abc1")).url == "https://example.com"

    def test_delete_invalidates_cache(self, db_session, config):
        create(db_session, config, key="abc1")
        cache = InMemoryCache()
        resolver, _, _ = make_resolver(db_session, config, cache=cache)
        asyncio.run(resolver.resolve("abc1"))

        asyncio.run(LinkService(db_session, config, cache=cache).delete_link("abc1", OWNER))

        with pytest.raises(NotFound):
            asyncio.run(resolver.resolve("abc1"))

    def test_cached_snapshot_still_expires(self, db_session, config):
        expires = datetime(2030, 1, 1, tzinfo=timezone.utc)
        create(db_session, config, key="soon", expires_at=expires)
        resolver, _, _ = make_resolver(db_session, config, cache=InMemoryCache())

        asyncio.run(resolver.resolve("soon", now=expires - timedelta(hours=1)))
        with pytest.raises(NotFound):
            asyncio.run(resolver.resolve("soon", now=expires + timedelta(hours=1)))


class TestPurgeExpired:

    def test_purge_removes_only_expired_links(self, db_session, config):
        cutoff = datetime(2030, 1, 1, tzinfo=timezone.utc)
        create(db_session, config, key="old1", expires_at=cutoff - timedelta(days=1))
        create(db_session, config, key="new1", expires_at=cutoff + timedelta(days=1))
        create(db_session, config, key="forever")
        service = LinkService(db_session, config)

        removed = asyncio.run(service.purge_expired(now=cutoff))

        assert removed == 1
        assert service.find_link_by_key("old1") is None
        assert service.find_link_by_key("new1") is not None
        assert service.find_link_by_key("forever") is not None
