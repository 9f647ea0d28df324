import asyncio
import json

import pytest
from eth_abi import encode

from flooring_telegram_bot import flooring_stream
from flooring_telegram_bot.flooring_stream import (
    FRAGMENT_NFT_TOPIC,
    EventStreamError,
    FragmentEventStream,
    extract_subscription_logs,
    parse_fragment_log,
)

CONTRACT = "0x3eb879cc9a0ef4c6f1d870a40ae187768c278da2"
COLLECTION = "0xbd3531da5cf5857e7cfaa92426877b022e612cf8"


def _topic(address: str) -> str:
    return "0x" + "0" * 24 + address[2:]


def _log(token_ids, block=100, log_index=0, tx="0xABC", **extra) -> dict:
    log = {
        "address": CONTRACT,
        "topics": [
            FRAGMENT_NFT_TOPIC,
            _topic("0x" + "1" * 40),
            _topic("0x" + "2" * 40),
            _topic(COLLECTION),
        ],
        "data": "0x" + encode(["uint256[]"], [list(token_ids)]).hex(),
        "blockNumber": hex(block),
        "logIndex": hex(log_index),
        "transactionHash": tx,
    }
    log.update(extra)
    return log


def test_topic_matches_event_signature() -> None:
    assert FRAGMENT_NFT_TOPIC == (
        "0xdbcd17ab6e507c914af6b370e49c4e3cf5f397e860c56ffbbd4af33c4da4ef23"
    )


def test_parse_fragment_log_decodes_event() -> None:
    event = parse_fragment_log(_log([5, 3, 9], block=18000000, log_index=4))

    assert event is not None
    assert event.collection_address == COLLECTION
    assert event.operator == "0x" + "1" * 40
    assert event.on_behalf_of == "0x" + "2" * 40
    assert event.token_ids == (5, 3, 9)
    assert event.block_number == 18000000
    assert event.log_index == 4
    assert event.tx_hash == "0xabc"


def test_parse_fragment_log_skips_removed_and_foreign_logs() -> None:
    assert parse_fragment_log(_log([1], removed=True)) is None

    foreign = _log([1])
    foreign["topics"][0] = "0x" + "f" * 64
    assert parse_fragment_log(foreign) is None


def test_parse_fragment_log_skips_empty_token_list() -> None:
    assert parse_fragment_log(_log([])) is None


def test_parse_fragment_log_skips_garbage_data() -> None:
    assert parse_fragment_log(_log([1], data="0xzz")) is None


def test_extract_subscription_logs_filters_by_subscription() -> None:
    message = json.dumps(
        {"method": "eth_subscription", "params": {"subscription": "0x1", "result": _log([1])}}
    )
    assert len(extract_subscription_logs(message, "0x1")) == 1
    assert extract_subscription_logs(message, "0x2") == []
    assert extract_subscription_logs("not json", "0x1") == []


class FakeWebSocket:
    def __init__(self, messages) -> None:
        self.sent = []
        self._messages = list(messages)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc) -> None:
        return None

    async def send(self, raw: str) -> None:
        self.sent.append(json.loads(raw))

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._messages:
            raise StopAsyncIteration
        return self._messages.pop(0)


class FakeRpc:
    def __init__(self, head: int, logs) -> None:
        self.head = head
        self.logs = logs
        self.ranges = []

    async def block_number(self) -> int:
        return self.head

    async def get_logs(self, address, topics, from_block, to_block):
        self.ranges.append((from_block, to_block))
        return [log for log in self.logs if from_block <= int(log["blockNumber"], 16) <= to_block]


def _notification(log: dict) -> str:
    return json.dumps({"method": "eth_subscription", "params": {"subscription": "0xsub", "result": log}})


async def _collect(stream: FragmentEventStream) -> tuple[list, Exception | None]:
    events = []
    try:
        async for event in stream.events():
            events.append(event)
    except EventStreamError as exc:
        return events, exc
    return events, None


def test_events_replay_then_live_without_duplicates(monkeypatch: pytest.MonkeyPatch) -> None:
    ws = FakeWebSocket(
        [
            json.dumps({"jsonrpc": "2.0", "id": 1, "result": "0xsub"}),
            _notification(_log([3], block=100, tx="0x3")),
            _notification(_log([4], block=101, tx="0x4")),
        ]
    )
    monkeypatch.setattr(flooring_stream.websockets, "connect", lambda *args, **kwargs: ws)
    rpc = FakeRpc(
        head=100,
        logs=[
            _log([2], block=95, log_index=1, tx="0x2"),
            _log([1], block=95, log_index=0, tx="0x1"),
            _log([3], block=100, tx="0x3"),
        ],
    )
    stream = FragmentEventStream("wss://node", rpc, CONTRACT, starting_block=90, block_range=5)

    events, error = asyncio.run(_collect(stream))

    assert [e.tx_hash for e in events] == ["0x1", "0x2", "0x3", "0x4"]
    assert rpc.ranges == [(90, 94), (95, 99), (100, 100)]
    assert ws.sent[0]["method"] == "eth_subscribe"
    assert ws.sent[0]["params"][1] == {"address": CONTRACT, "topics": [FRAGMENT_NFT_TOPIC]}
    assert isinstance(error, EventStreamError)


def test_events_from_head_skips_replay(monkeypatch: pytest.MonkeyPatch) -> None:
    ws = FakeWebSocket(
        [
            json.dumps({"jsonrpc": "2.0", "id": 1, "result": "0xsub"}),
            _notification(_log([8], block=500, tx="0x8")),
        ]
    )
    monkeypatch.setattr(flooring_stream.websockets, "connect", lambda *args, **kwargs: ws)
    rpc = FakeRpc(head=500, logs=[])

    events, error = asyncio.run(_collect(FragmentEventStream("wss://node", rpc, CONTRACT)))

    assert [e.token_ids for e in events] == [(8,)]
    assert rpc.ranges == []
    assert isinstance(error, EventStreamError)


def test_subscribe_error_is_fatal(monkeypatch: pytest.MonkeyPatch) -> None:
    ws = FakeWebSocket([json.dumps({"jsonrpc": "2.0", "id": 1, "error": {"message": "denied"}})])
    monkeypatch.setattr(flooring_stream.websockets, "connect", lambda *args, **kwargs: ws)

    events, error = asyncio.run(_collect(FragmentEventStream("wss://node", FakeRpc(0, []), CONTRACT)))

    assert events == []
    assert isinstance(error, EventStreamError)
    assert "denied" in str(error)


class TimingOutConnect:
    async def __aenter__(self):
        raise asyncio.TimeoutError()

    async def __aexit__(self, *exc) -> None:
        return None


def test_connect_timeout_is_fatal(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(flooring_stream.websockets, "connect", lambda *args, **kwargs: TimingOutConnect())

    events, error = asyncio.run(_collect(FragmentEventStream("wss://node", FakeRpc(0, []), CONTRACT)))

    assert events == []
    assert isinstance(error, EventStreamError)
