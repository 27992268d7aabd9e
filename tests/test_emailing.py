from chainrise.emailing import EmailClient, Mailer


def test_outbox_keeps_only_the_newest_messages() -> None:
    client = EmailClient("", 25, max_outbox=3)
    for number in range(5):
        message = client.build_message(f"Notice {number}", "body", sender="noreply@example.com", recipients=["a@b.c"])
        assert client.send(message) is False

    assert [message["Subject"] for message in client.deliveries()] == ["Notice 2", "Notice 3", "Notice 4"]
    client.clear()
    assert client.deliveries() == ()


def test_mailer_skips_missing_recipient() -> None:
    client = EmailClient("", 25)
    mailer = Mailer(
        client,
        sender="noreply@example.com",
        admin_email="admin@example.com",
        site_url="https://chainrise.example/",
        admin_url="https://chainrise.example/admin",
    )

    assert mailer.deposit_approved(email=None, amount_cents=100_00, deposit_id=7) is False
    assert client.deliveries() == ()
    mailer.deposit_approved(email="sam@example.com", amount_cents=100_00, deposit_id=7)
    (message,) = client.deliveries()
    assert message["Subject"] == "Deposit of $100.00 Approved"
    assert "Deposit ID: 7" in message.get_content()
