"""
Pub/Sub Relay — One subscriber connection, many logical channels.

The relay owns a single Redis pub/sub connection and an in-process table
mapping channel name -> subscription (handler + optional payload decoder).
Publishing goes through the regular client, so a relay can send on
channels it does not listen to.

Delivery is at-most-once: messages for channels without a handler are
dropped, payloads that fail to decode are dropped with a warning, and a
failing handler is logged and never retried. Handlers run on the reader
task and must not block.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

PayloadHandler = Callable[[Any], Union[None, Awaitable[None]]]
PayloadDecoder = Callable[[Any], Any]

DEFAULT_POLL_INTERVAL = 0.05


@dataclass
class ChannelSubscription:
    """Handler registered for one channel.

    ``decoder`` turns the JSON-decoded payload into the channel's payload
    type (e.g. ``Sound.from_dict``) before the handler sees it.
    """
    channel: str
    handler: PayloadHandler
    decoder: Optional[PayloadDecoder] = None
    delivered: int = 0

    def decode(self, raw: Any) -> Any:
        payload = json.loads(raw)
        if self.decoder is not None:
            payload = self.decoder(payload)
        return payload


class PubSubRelay:
    """Multiplex one pub/sub connection across channel handlers."""

    def __init__(
        self,
        client: Redis,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self._client = client
        self._pubsub = client.pubsub(ignore_subscribe_messages=True)
        self._subscriptions: Dict[str, ChannelSubscription] = {}
        self._poll_interval = poll_interval
        self._task: Optional[asyncio.Task] = None
        self.dropped = 0

    @classmethod
    def from_config(cls, redis_config, relay_config) -> PubSubRelay:
        """Build a relay with its own connection pool."""
        from raidbotdb.store import connect

        client = connect(redis_config, client_name=relay_config.connection_name)
        logger.info(f"PubSubRelay connecting: {redis_config.url}")
        return cls(client, poll_interval=relay_config.poll_interval)

    @property
    def channels(self) -> List[str]:
        """Channels that currently have a handler."""
        return sorted(self._subscriptions)

    # -- Handler table -----------------------------------------------------

    async def on(
        self,
        channel: str,
        handler: PayloadHandler,
        decoder: Optional[PayloadDecoder] = None,
    ) -> None:
        """Register *handler* for *channel*, replacing any previous one."""
        if not channel:
            raise ValueError("Channel name must be a non-empty string")
        if channel in self._subscriptions:
            logger.debug(f"Handler replaced on {channel!r}")
        else:
            # Table entry only after the transport accepted the subscription
            await self._pubsub.subscribe(channel)
            logger.debug(f"Subscribed to {channel!r}")
        self._subscriptions[channel] = ChannelSubscription(
            channel=channel, handler=handler, decoder=decoder,
        )

    async def remove_listener(self, channel: str) -> bool:
        """Unsubscribe from *channel*. Returns False if it had no handler."""
        if self._subscriptions.pop(channel, None) is None:
            return False
        await self._pubsub.unsubscribe(channel)
        logger.debug(f"Unsubscribed from {channel!r}")
        return True

    async def send(self, channel: str, payload: Any) -> int:
        """Publish *payload* as JSON. Returns the number of receivers."""
        return int(await self._client.publish(channel, json.dumps(payload)))

    # -- Dispatch ----------------------------------------------------------

    async def dispatch(self, message: Dict[str, Any]) -> bool:
        """Deliver one pub/sub message to its handler.

        Returns True if a handler ran to completion.
        """
        if message.get("type") != "message":
            return False
        channel = message["channel"]
        subscription = self._subscriptions.get(channel)
        if subscription is None:
            self.dropped += 1
            return False
        try:
            payload = subscription.decode(message["data"])
        except Exception as exc:
            self.dropped += 1
            logger.warning(f"Dropped undecodable message on {channel!r}: {exc}")
            return False
        try:
            result = subscription.handler(payload)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.warning(f"Handler for {channel!r} failed: {exc}")
            return False
        subscription.delivered += 1
        return True

    async def _reader(self) -> None:
        """Read and dispatch messages until cancelled."""
        while True:
            if not self._pubsub.subscribed:
                await asyncio.sleep(self._poll_interval)
                continue
            message = await self._pubsub.get_message(
                ignore_subscribe_messages=True, timeout=self._poll_interval,
            )
            if message is None:
                continue
            try:
                await self.dispatch(message)
            except Exception as exc:
                self.dropped += 1
                logger.warning(f"Dispatch failed on {message.get('channel')!r}: {exc}")

    # -- Lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Start the reader task on the running event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._reader())
            logger.debug("Relay reader started")

    async def close(self) -> None:
        """Stop the reader, drop all handlers and close both connections."""
        task, self._task = self._task, None
        try:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as exc:
                    logger.warning(f"Relay reader had stopped: {exc!r}")
        finally:
            self._subscriptions.clear()
            try:
                await self._pubsub.aclose()
            finally:
                await self._client.aclose()
            logger.debug("Relay closed")

    async def __aenter__(self) -> PubSubRelay:
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
