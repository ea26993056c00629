# services/notify_fcm.py
from firebase_admin import messaging

from firebase_init import ensure_firebase_app

# per-user topic; the app subscribes after sign-in
TOPIC_USER_TICKETS = "users.{user_id}"


def notify_user_tickets_issued(
    *,
    user_id: str,
    booking_reference: str,
    ticket_count: int,
    title: str | None,
    starts_at: str | None = None,
) -> str:
    """
    Sends a 'Tickets confirmed' push to the buyer's per-user topic.
    Client must subscribe to topic 'users.{user_id}'.
    """
    ensure_firebase_app()

    topic = TOPIC_USER_TICKETS.format(user_id=user_id)
    noun = "ticket" if int(ticket_count) == 1 else "tickets"
    body = f"{int(ticket_count)} {noun}"
    if title:
        body += f" for {title}"
    if starts_at:
        body += f" • {starts_at}"

    msg = messaging.Message(
        notification=messaging.Notification(title="🎟️ Tickets confirmed", body=body),
        data={
            "type": "tickets_issued",
            "booking_reference": str(booking_reference),
            "ticket_count": str(int(ticket_count)),
            "deeplink": "/tickets",
        },
        topic=topic,
        android=messaging.AndroidConfig(
            priority="high",
            notification=messaging.AndroidNotification(channel_id="tickets")
        ),
        apns=messaging.APNSConfig(
            headers={"apns-priority": "10"},
            payload=messaging.APNSPayload(aps=messaging.Aps(sound="default"))
        ),
    )
    return messaging.send(msg)
