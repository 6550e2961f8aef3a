from pothpath.auth import Identity, SessionSigner, parse_admin_emails


def test_session_token_round_trip():
    signer = SessionSigner("secret", max_age=60)
    token = signer.issue(Identity(id="u1", email="Reader@Example.com", user_metadata={"full_name": "R"}))

    identity = signer.read(token)

    assert identity.id == "u1"
    assert identity.email == "reader@example.com"
    assert identity.user_metadata == {"full_name": "R"}


def test_bad_tokens_are_ignored():
    signer = SessionSigner("secret", max_age=60)
    token = signer.issue(Identity(id="u1", email="a@b.c"))

    assert signer.read(None) is None
    assert signer.read(token + "x") is None
    assert SessionSigner("other-secret", max_age=60).read(token) is None
    assert SessionSigner("secret", max_age=-1).read(token) is None


def test_parse_admin_emails():
    assert parse_admin_emails(" Admin@Example.com, ,ops@example.com ") == frozenset(
        {"admin@example.com", "ops@example.com"}
    )
    assert parse_admin_emails(None) == frozenset()
