import asyncio
import json

from engine.models import ActionType, ActorSource, GameStatus
from host.config import HostConfig
from host.server import ClientSession, HostServer

from .helpers import make_service


class DummyWebSocket:
    def __init__(self, incoming=()) -> None:
        self.sent = []
        self._incoming = list(incoming)

    async def send(self, message: str) -> None:
        self.sent.append(message)

    async def close(self) -> None:
        return None

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self._incoming:
            yield message

    def frames(self, msg_type=None):
        parsed = [json.loads(raw) for raw in self.sent]
        if msg_type is None:
            return parsed
        return [frame for frame in parsed if frame["type"] == msg_type]


def _server(**config):
    service, transport = make_service(auto_start_players=2)
    return HostServer(HostConfig(**config), service=service), service


def _connect(server):
    websocket = DummyWebSocket()
    session = ClientSession(websocket=websocket)
    server.sessions[websocket] = session
    return websocket, session


def test_unknown_messages_get_an_error_frame():
    server, _ = _server()
    websocket, session = _connect(server)

    asyncio.run(server._dispatch(session, {"type": "dance"}))
    asyncio.run(server._dispatch(session, server._decode("not json")))

    errors = websocket.frames("error")
    assert [frame["code"] for frame in errors] == ["UNKNOWN_TYPE", "UNKNOWN_TYPE"]
    assert all(frame["v"] == 1 for frame in errors)


def test_join_and_play_over_the_socket():
    server, service = _server()
    alice_ws, alice = _connect(server)
    bob_ws, bob = _connect(server)

    async def scenario():
        await server._dispatch(alice, {"type": "create_game", "small_blind": 5, "big_blind": 10})
        game_id = alice_ws.frames("game_created")[0]["game_id"]

        await server._dispatch(alice, {"type": "action", "game_id": game_id, "action": "call"})
        assert alice_ws.frames("error")[-1]["code"] == "NOT_SEATED"

        await server._dispatch(alice, {"type": "join", "game_id": game_id, "user_id": "alice"})
        await server._dispatch(bob, {"type": "join", "game_id": game_id, "user_id": "bob"})
        welcome = bob_ws.frames("welcome")[0]
        assert welcome["seat"] == 1
        # Bob's join deals the hand, so the welcome reports his stack after the 10 big blind.
        assert welcome["stack"] == 990

        game = service.get_game(game_id)
        assert game.status == GameStatus.ACTIVE
        # Each client only ever sees its own hole cards.
        latest = alice_ws.frames("snapshot")[-1]
        alice_id = alice.players[game_id]
        visible = {p["id"]: p["hole_cards"] for p in latest["players"]}
        assert len(visible[alice_id]) == 2
        assert visible[bob.players[game_id]] == []

        waiting = bob if game.current_player_turn == alice_id else alice
        waiting_ws = bob_ws if waiting is bob else alice_ws
        await server._dispatch(waiting, {"type": "action", "game_id": game_id, "action": "check"})
        assert waiting_ws.frames("error")[-1]["code"] == "OUT_OF_TURN"

        acting = alice if waiting is bob else bob
        await server._dispatch(acting, {"type": "action", "game_id": game_id, "action": "fold", "hand_id": 1})
        assert service.get_game(game_id).status == GameStatus.COMPLETED

        await server._dispatch(alice, {"type": "history", "game_id": game_id})
        history = alice_ws.frames("history")[-1]
        assert [a["actionType"] for a in history["actions"]] == ["fold"]

        await server._dispatch(alice, {"type": "action", "game_id": game_id, "action": "call", "amount": "lots"})
        assert alice_ws.frames("error")[-1]["code"] == "BAD_SCHEMA"
        server.timeouts.close()

    asyncio.run(scenario())


def test_simulator_commands_round_trip():
    server, service = _server()
    websocket, session = _connect(server)

    async def scenario():
        await server._dispatch(session, {"type": "create_game"})
        game_id = websocket.frames("game_created")[0]["game_id"]
        await server._dispatch(
            session,
            {"type": "simulator", "game_id": game_id, "config": {"enabled": True, "defaultStrategy": {"id": "call_any"}}},
        )
        await server._dispatch(session, {"type": "simulator", "game_id": game_id, "command": "pause"})
        await server._dispatch(session, {"type": "simulator", "game_id": game_id})
        return game_id

    game_id = asyncio.run(scenario())
    replies = websocket.frames("simulator")
    assert replies[0]["config"]["enabled"] is True
    assert replies[1]["config"]["paused"] is True
    assert websocket.frames("error")[-1]["code"] == "BAD_SCHEMA"
    assert game_id in server.games


def test_bot_table_is_driven_by_the_tick_and_next_hand_is_dealt():
    server, service = _server(next_hand_delay_ms=60_000)
    server.config.worker.enabled = True
    websocket, session = _connect(server)

    async def scenario():
        await server._dispatch(
            session,
            {
                "type": "create_game",
                "simulator": {
                    "enabled": True,
                    "defaultStrategy": {"id": "always_fold"},
                    "delays": {"minMs": 0, "maxMs": 0},
                },
            },
        )
        game_id = websocket.frames("game_created")[0]["game_id"]
        await asyncio.to_thread(service.join_game, game_id, "bot-a")
        await asyncio.to_thread(service.join_game, game_id, "bot-b")
        await server._dispatch(session, {"type": "watch", "game_id": game_id})

        await server._tick()
        finished = service.get_game(game_id)
        assert finished.status == GameStatus.COMPLETED
        assert finished.hand_id == 1

        assert await server._deal_next_hands() == 0
        server.config.next_hand_delay_ms = 1
        await asyncio.sleep(0.01)
        assert await server._deal_next_hands() == 1
        assert service.get_game(game_id).hand_id == 2
        server.timeouts.close()

    asyncio.run(scenario())
    assert websocket.frames("snapshot")


def test_disconnect_marks_the_seat_offline():
    server, service = _server()
    game = service.create_game(game_id="t1")
    websocket = DummyWebSocket(
        [json.dumps({"type": "join", "game_id": "t1", "user_id": "carol"})]
    )

    async def scenario():
        await server._handle_connection(websocket)
        server.timeouts.close()

    asyncio.run(scenario())
    player = service.get_game(game.id).players[0]
    assert not player.is_connected
    assert websocket.frames("welcome")[0]["player_id"] == player.id
    assert server.sessions == {}
    assert server.hub.subscriber_count("topic:t1") == 0


def test_surviving_observer_takes_over_the_turn_clock():
    server, service = _server()
    service.create_game(game_id="t1", turn_ms=300)
    alice_ws, alice = _connect(server)
    bob_ws, bob = _connect(server)

    async def scenario():
        await server._dispatch(alice, {"type": "join", "game_id": "t1", "user_id": "alice"})
        await server._dispatch(bob, {"type": "join", "game_id": "t1", "user_id": "bob"})
        assert service.get_game("t1").status == GameStatus.ACTIVE
        assert alice.watchers["t1"].owns_timer
        assert not bob.watchers["t1"].owns_timer

        await server._disconnect(alice)
        assert server.timeouts.pending() == 1
        assert bob.watchers["t1"].owns_timer

        for _ in range(40):
            await asyncio.sleep(0.05)
            if service.get_game("t1").status == GameStatus.COMPLETED:
                break
        await server.timeouts.wait_idle()
        server.timeouts.close()

    asyncio.run(scenario())
    game = service.get_game("t1")
    assert game.status == GameStatus.COMPLETED
    last = service.repository.actions("t1", game.hand_id)[-1]
    assert last.action_type == ActionType.TIMEOUT
    assert last.actor_source == ActorSource.SYSTEM
    assert bob_ws.frames("snapshot")


def test_host_config_reads_the_environment(monkeypatch):
    monkeypatch.setenv("POKER_PORT", "9100")
    monkeypatch.setenv("POKER_DB_URL", "sqlite://")
    monkeypatch.setenv("SIM_BOT_ENABLED", "false")

    config = HostConfig()
    assert config.port == 9100
    assert config.db_url == "sqlite://"
    assert not config.worker.enabled
    assert config.table.big_blind == 20
