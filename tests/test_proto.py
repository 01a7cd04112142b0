import pytest
from pydantic import ValidationError

from rodnya.core import proto


def test_build_frame_has_fields():
    f = proto.build_frame("new-message", {"x": 1})
    assert set(f.keys()) == {"type", "payload", "ts"}
    assert proto.build_frame("x", [], ts=5)["ts"] == 5


def test_error_frame_names_the_event():
    f = proto.error_frame("UNAUTHORIZED", "login required", event="send-message")
    assert f["type"] == proto.T_ERROR
    assert f["payload"] == {"code": "UNAUTHORIZED", "message": "login required", "event": "send-message"}


def test_envelope_requires_type():
    with pytest.raises(ValidationError):
        proto.Envelope.model_validate({"payload": {}})
    env = proto.Envelope.model_validate({"type": "get-users"})
    assert env.payload == {}


@pytest.mark.parametrize("value", [None, "", "  ", "general"])
def test_general_recipient_normalised(value):
    payload = {"message": "hi"}
    if value is not None:
        payload["recipientUsername"] = value
    assert proto.SendMessagePayload.model_validate(payload).recipient is None


def test_private_recipient_and_message_bounds():
    p = proto.SendMessagePayload.model_validate({"recipientUsername": " bob ", "message": " hi "})
    assert p.recipient == "bob"
    assert p.message == "hi"
    with pytest.raises(ValidationError):
        proto.SendMessagePayload.model_validate({"message": ""})
    with pytest.raises(ValidationError):
        proto.SendMessagePayload.model_validate({"message": "x" * (proto.MESSAGE_MAX + 1)})


def test_credentials_reject_separator_in_username():
    with pytest.raises(ValidationError):
        proto.Credentials.model_validate({"username": "a:b", "password": "secret"})
    assert proto.Credentials.model_validate({"username": "Боря", "password": "secret"}).username == "Боря"


def test_send_file_defaults():
    p = proto.SendFilePayload.model_validate(
        {"filename": "1-a.bin", "originalname": "a.bin", "url": "/uploads/1-a.bin"}
    )
    assert p.mimetype == "application/octet-stream"
    assert p.size is None
    assert p.caption == ""
    with pytest.raises(ValidationError):
        proto.SendFilePayload.model_validate({"filename": "x", "originalname": "x", "url": "/u", "size": -1})


def test_text_message_wire_shape():
    m = proto.Message(id=3, sender="alice", text="hello", created_at=0)
    wire = m.to_wire()
    assert wire["username"] == wire["from"] == "alice"
    assert wire["to"] == proto.GENERAL
    assert wire["isGeneral"] is True
    assert wire["timestamp"] == "1970-01-01T00:00:00.000+00:00"
    assert "filename" not in wire


def test_file_message_wire_shape():
    m = proto.Message(
        id=4,
        sender="alice",
        recipient="bob",
        kind=proto.KIND_FILE,
        filename="1-a.png",
        original_name="a.png",
        url="/uploads/1-a.png",
        mimetype="image/png",
        size=10,
        created_at=1000,
    )
    wire = m.to_wire()
    assert wire["isGeneral"] is False
    assert wire["type"] == "file"
    assert wire["originalname"] == "a.png"
    assert wire["caption"] == ""
    assert m.participants() == {"alice", "bob"}
