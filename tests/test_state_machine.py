from conftest import Harness
from ftpcore.protocol.state_machine import SessionState


def test_connection_gets_greeting_and_awaits_identity(harness):
    conn = harness.connect()
    lines = conn.lines()
    assert lines[0].startswith("220-")
    assert lines[-1].startswith("220 ")
    assert "testftp" in lines[0]
    assert harness.machine.state is SessionState.AWAITING_IDENTITY


def test_successful_login(harness):
    conn = harness.connect()
    assert harness.send(conn, "USER craig") == ["331 OK. Password required"]
    assert harness.machine.state is SessionState.AWAITING_PASSWORD
    assert harness.send(conn, "PASS music") == ["230 OK."]
    assert harness.machine.state is SessionState.READY


def test_wrong_user_returns_to_idle_and_requires_reconnect(harness):
    conn = harness.connect()
    assert harness.send(conn, "USER wrong") == ["530 User not found"]
    assert harness.machine.state is SessionState.IDLE

    conn.clear()
    harness.clock.advance(0.5)
    harness.tick()
    assert conn.lines() == ["221 Goodbye"]
    assert conn.closed
    assert harness.machine.session is None
    assert harness.machine.state is SessionState.AWAITING_CONNECTION

    retry = harness.connect()
    assert harness.send(retry, "USER craig") == ["331 OK. Password required"]


def test_auth_failure_pauses_before_teardown(harness):
    conn = harness.connect()
    harness.send(conn, "USER wrong")
    conn.clear()
    harness.tick()
    assert conn.lines() == []
    assert not conn.closed


def test_non_user_command_while_awaiting_identity(harness):
    conn = harness.connect()
    assert harness.send(conn, "PWD") == ["500 Syntax error"]
    assert harness.machine.state is SessionState.IDLE


def test_wrong_password_returns_to_idle(harness):
    conn = harness.connect()
    harness.send(conn, "USER craig")
    assert harness.send(conn, "PASS nope") == ["530 Login incorrect"]
    assert harness.machine.state is SessionState.IDLE


def test_identity_deadline(harness):
    conn = harness.connect()
    conn.clear()
    harness.clock.advance(10.5)
    harness.tick()
    assert conn.lines() == ["530 Timeout"]
    assert harness.machine.state is SessionState.IDLE


def test_inactivity_timeout_replies_once(harness):
    conn = harness.login()
    harness.clock.advance(15 * 60 + 1)
    harness.tick()
    assert harness.machine.state is SessionState.IDLE

    for _ in range(5):
        harness.clock.advance(1)
        harness.tick()

    lines = conn.lines()
    assert lines.count("530 Timeout") == 1
    assert lines[-1] == "221 Goodbye"
    assert conn.closed
    assert harness.machine.state is SessionState.AWAITING_CONNECTION


def test_known_command_resets_inactivity_deadline(harness):
    conn = harness.login()
    harness.clock.advance(500)
    harness.send(conn, "NOOP")
    harness.clock.advance(500)
    harness.tick()
    assert harness.machine.state is SessionState.READY


def test_unknown_command_does_not_reset_deadline(harness):
    conn = harness.login()
    harness.clock.advance(500)
    assert harness.send(conn, "XYZZ") == ["500 Unknown command"]
    harness.clock.advance(401)
    harness.tick()
    assert "530 Timeout" in conn.lines()


def test_syntax_error_keeps_session(harness):
    conn = harness.login()
    assert harness.send(conn, "TOOLONG arg") == ["500 Syntax error"]
    assert harness.machine.state is SessionState.READY


def test_empty_line_is_ignored(harness):
    conn = harness.login()
    assert harness.send(conn, "") == []
    assert harness.machine.state is SessionState.READY


def test_one_line_per_tick(harness):
    conn = harness.login()
    conn.feed(b"NOOP\r\nSYST\r\n")
    harness.tick()
    assert conn.lines() == ["200 Zzz..."]
    harness.tick()
    assert conn.lines() == ["200 Zzz...", "215 UNIX Type: L8"]


def test_bytes_arriving_one_at_a_time(harness):
    conn = harness.login()
    for byte in b"PWD\r\n":
        conn.feed(bytes([byte]))
        harness.tick()
    assert conn.lines() == ['257 "/" is your current directory']


def test_quit(harness):
    conn = harness.login()
    assert harness.send(conn, "QUIT") == ["221 Goodbye"]
    assert conn.closed
    assert harness.machine.session is None
    harness.tick()
    assert harness.machine.state is SessionState.AWAITING_CONNECTION
    assert conn.lines() == ["221 Goodbye"]


def test_quit_closes_open_data_channel(harness):
    conn = harness.login()
    harness.send(conn, "PASV")
    harness.send(conn, "QUIT")
    assert harness.ports.listeners[0].closed


def test_client_disconnect_is_detected(harness):
    conn = harness.login()
    conn.peer_closed = True
    harness.tick()
    assert harness.machine.session is None
    assert harness.machine.state is SessionState.IDLE
    harness.tick()
    assert harness.machine.state is SessionState.AWAITING_CONNECTION


def test_new_connection_replaces_existing_session(harness):
    first = harness.login()
    harness.send(first, "PASV")
    second = harness.connect()

    assert first.closed
    assert harness.ports.listeners[0].closed
    assert second.lines()[0].startswith("220-")
    assert harness.machine.state is SessionState.AWAITING_IDENTITY
    assert harness.machine.session.control is second


def test_new_session_starts_at_root(harness):
    conn = harness.login()
    harness.store.mkdir("/music")
    harness.send(conn, "CWD music")
    conn = harness.login()
    assert harness.send(conn, "PWD") == ['257 "/" is your current directory']


def test_control_write_failure_is_treated_as_disconnect(harness):
    conn = harness.login()
    conn.fail_writes = True
    conn.feed(b"NOOP\r\n")
    harness.tick()
    harness.tick()
    assert harness.machine.session is None


def test_session_events_are_logged(harness, tmp_path):
    conn = harness.login()
    harness.send(conn, "QUIT")
    events = (tmp_path / "logs" / "session_events.jsonl").read_text()
    assert "SESSION_START" in events
    assert "PASS ****" in events
    assert "music" not in events
    assert "SESSION_END" in events


def test_retr_during_transfer_defers_other_commands(harness):
    with open(harness.root / "big.bin", "wb") as f:
        f.write(b"z" * 20000)

    conn = harness.login()
    harness.send(conn, "PASV")
    data = harness.offer_data_connection()
    harness.send(conn, "RETR big.bin")
    assert harness.machine.engine.active

    conn.clear()
    conn.feed(b"PWD\r\n")
    harness.tick()
    assert conn.lines() == []

    harness.run_transfer()
    harness.tick()
    lines = conn.lines()
    assert lines[0] == "226-File successfully transferred"
    assert lines[-1] == '257 "/" is your current directory'
    assert bytes(data.outbound) == b"z" * 20000


def test_abor_interrupts_running_transfer(harness):
    with open(harness.root / "big.bin", "wb") as f:
        f.write(b"z" * 20000)

    conn = harness.login()
    harness.send(conn, "PASV")
    data = harness.offer_data_connection()
    harness.send(conn, "RETR big.bin")
    lines = harness.send(conn, "ABOR")

    assert lines == ["426 Transfer aborted", "226 Data connection closed"]
    assert not harness.machine.engine.active
    assert data.closed
    assert harness.ports.listeners[0].closed


def test_disconnect_during_transfer_aborts_job(harness, tmp_path):
    with open(harness.root / "big.bin", "wb") as f:
        f.write(b"z" * 20000)

    conn = harness.login()
    harness.send(conn, "PASV")
    data = harness.offer_data_connection()
    harness.send(conn, "RETR big.bin")
    conn.peer_closed = True
    harness.tick()

    assert not harness.machine.engine.active
    assert data.closed
    assert harness.machine.session is None
    events = (tmp_path / "logs" / "session_events.jsonl").read_text()
    assert '"outcome": "aborted"' in events


def test_custom_credentials_from_config(tmp_path):
    harness = Harness(tmp_path, config={'system': {'username': 'admin', 'password': 1234}})
    conn = harness.connect()
    harness.send(conn, "USER admin")
    assert harness.send(conn, "PASS 1234") == ["230 OK."]


def test_login_rejected_without_session_logger(tmp_path):
    harness = Harness(tmp_path)
    harness.machine.session_logger = None
    conn = harness.connect()
    assert harness.send(conn, "USER nobody") == ["530 User not found"]


def test_shutdown_says_goodbye(harness):
    conn = harness.login()
    harness.machine.shutdown()
    assert conn.lines()[-1] == "221 Goodbye"
    assert conn.closed


def test_commands_queued_during_transfer_are_bounded(harness):
    with open(harness.root / "huge.bin", "wb") as f:
        f.write(b"q" * 200000)

    conn = harness.login()
    harness.send(conn, "PASV")
    harness.offer_data_connection()
    harness.send(conn, "RETR huge.bin")

    conn.clear()
    conn.feed(b"PWD\r\n" * 10)
    harness.tick(10)
    assert harness.machine.engine.active
    assert len(harness.machine.session.pending) == 8
    assert conn.lines() == ["500 Too many pending commands"] * 2

    harness.run_transfer()
    harness.tick(8)
    assert conn.lines().count('257 "/" is your current directory') == 8
