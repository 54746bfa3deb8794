"""
portalcrypt - Channel tests.

Tests for the per-connection channel, key caching and async pairing.
"""

import threading

import pytest

from portalcrypt.channel import PortalChannel, current_timestamp
from portalcrypt.config import Config
from portalcrypt.errors import AuthenticationError, ConfigurationError, EncodeError
from portalcrypt.kdf import KeyCache, Pbkdf2KeyDeriver, derive_key_async

PASSPHRASE = "horse-battery-staple"
DESKTOP_ID = "desktop-abc123"


class CountingDeriver(Pbkdf2KeyDeriver):
    """Deriver that records how many times the KDF actually runs."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = 0
        self._calls_lock = threading.Lock()

    def _stretch(self, secret, salt):
        with self._calls_lock:
            self.calls += 1
        return super()._stretch(secret, salt)


def test_desktop_and_mobile_channels_talk(key_cache):
    desktop = PortalChannel(cache=key_cache)
    mobile = PortalChannel(cache=KeyCache())
    desktop.pair(PASSPHRASE, DESKTOP_ID)
    mobile.pair(PASSPHRASE, DESKTOP_ID)

    assert desktop.fingerprint == mobile.fingerprint

    text = mobile.send_text("pair_request", {"deviceName": "phone"}, id="req-1")
    message = desktop.receive_text(text)

    assert message.type == "pair_request"
    assert message.payload == {"deviceName": "phone"}
    assert message.routing == {"id": "req-1"}


def test_seal_stamps_current_time(key_cache):
    channel = PortalChannel(cache=key_cache)
    before = current_timestamp()
    envelope = channel.seal("select_project", {"path": "/src"})
    after = current_timestamp()

    assert before <= envelope["timestamp"] <= after


def test_unpaired_channel_refuses_encrypted_types(key_cache):
    channel = PortalChannel(cache=key_cache)

    assert not channel.is_paired
    assert channel.fingerprint is None
    with pytest.raises(ConfigurationError):
        channel.seal("ping", {})

    channel.pair(PASSPHRASE, DESKTOP_ID)
    assert channel.is_paired
    channel.unpair()
    with pytest.raises(ConfigurationError):
        channel.seal("ping", {})


def test_seal_rejects_non_routing_keywords(key_cache):
    channel = PortalChannel(cache=key_cache)
    channel.pair(PASSPHRASE, DESKTOP_ID)

    with pytest.raises(EncodeError):
        channel.seal("select_project", {"p": 1}, type="ping")
    with pytest.raises(EncodeError):
        channel.send_text("ping", {"p": 1}, encrypted={"iv": "AAAA"})

    envelope = channel.seal("ping", {"p": 1}, id="req-9", sessionToken="tok")
    assert envelope["type"] == "ping"
    assert "payload" not in envelope


def test_wrong_passphrase_cannot_read(key_cache):
    desktop = PortalChannel(cache=key_cache)
    intruder = PortalChannel(cache=key_cache)
    desktop.pair(PASSPHRASE, DESKTOP_ID)
    intruder.pair("guessed-passphrase", DESKTOP_ID)

    with pytest.raises(AuthenticationError):
        intruder.open(desktop.seal("ping", {"secret": 1}))


def test_cache_derives_once_per_pairing(key_cache):
    deriver = CountingDeriver(iterations=1000)
    channel = PortalChannel(deriver=deriver, cache=key_cache)

    first = channel.pair(PASSPHRASE, DESKTOP_ID)
    second = channel.pair(PASSPHRASE, DESKTOP_ID)  # reconnect

    assert first is second
    assert deriver.calls == 1
    assert len(key_cache) == 1

    channel.pair(PASSPHRASE, "desktop-other")
    assert deriver.calls == 2

    key_cache.clear()
    assert len(key_cache) == 0
    channel.pair(PASSPHRASE, DESKTOP_ID)
    assert deriver.calls == 3


def test_cache_scoped_by_parameters(key_cache):
    low = key_cache.get_or_derive(Pbkdf2KeyDeriver(iterations=1000), PASSPHRASE, DESKTOP_ID)
    high = key_cache.get_or_derive(Pbkdf2KeyDeriver(iterations=2000), PASSPHRASE, DESKTOP_ID)

    assert low != high
    assert len(key_cache) == 2


def test_concurrent_pairing_derives_once(key_cache):
    deriver = CountingDeriver(iterations=1000)
    results = []

    def worker():
        results.append(key_cache.get_or_derive(deriver, PASSPHRASE, DESKTOP_ID))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert deriver.calls == 1
    assert len(results) == 8
    assert all(key is results[0] for key in results)


def test_failed_derivation_leaves_no_lock(key_cache):
    class FailingDeriver(Pbkdf2KeyDeriver):
        def _stretch(self, secret, salt):
            raise RuntimeError("kdf unavailable")

    with pytest.raises(RuntimeError):
        key_cache.get_or_derive(FailingDeriver(iterations=1000), PASSPHRASE, DESKTOP_ID)

    assert len(key_cache) == 0
    assert key_cache._locks == {}


def test_cache_rejects_invalid_secret(key_cache):
    with pytest.raises(ConfigurationError):
        key_cache.get_or_derive(Pbkdf2KeyDeriver(iterations=1000), "", DESKTOP_ID)
    assert len(key_cache) == 0


@pytest.mark.asyncio
async def test_async_derivation_matches_sync(fast_deriver):
    key = await derive_key_async(PASSPHRASE, DESKTOP_ID, fast_deriver)
    assert key == fast_deriver.derive(PASSPHRASE, DESKTOP_ID)


@pytest.mark.asyncio
async def test_async_pairing_uses_cache(key_cache):
    deriver = CountingDeriver(iterations=1000)
    channel = PortalChannel(deriver=deriver, cache=key_cache)

    first = await channel.apair(PASSPHRASE, DESKTOP_ID)
    second = channel.pair(PASSPHRASE, DESKTOP_ID)

    assert first is second
    assert deriver.calls == 1


def test_channel_from_config(temp_dir, key_cache):
    path = temp_dir / "config.toml"
    path.write_text(
        '[kdf]\n'
        'iterations = 1000\n'
        'namespace = "chell-portal"\n'
        '\n'
        '[policy]\n'
        'encrypted_types = ["terminal_input"]\n'
    )

    channel = PortalChannel.from_config(Config(path), cache=key_cache)
    channel.pair(PASSPHRASE, DESKTOP_ID)

    assert channel.deriver.iterations == 1000
    assert channel.deriver.namespace == "chell-portal"
    assert "iv" in channel.seal("terminal_input", {"data": "x"})
    assert "payload" in channel.seal("terminal_output", {"data": "x"})


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
