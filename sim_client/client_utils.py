import uuid

TIMEZONES = (
    "UTC",
    "America/New_York",
    "America/Los_Angeles",
    "Europe/London",
    "Europe/Paris",
    "Asia/Tokyo",
    "Asia/Shanghai",
    "Australia/Sydney",
    "Pacific/Auckland",
    "Asia/Dubai",
)

# tipo de mensaje -> (atributo, plantilla de la URL del medio)
MEDIA_ATTRIBUTES = {
    "voice": ("voice_url", "https://example.com/voice/{}.mp3"),
    "video": ("video_url", "https://example.com/video/{}.mp4"),
}

# Topics relativos al TOPIC_PREFIX configurado
MESSAGE_TOPIC = "{prefix}/message" # Los clientes publican aquí sus mensajes
RESPONSE_TOPIC = "{prefix}/response/{client_id}" # El servidor responde a cada cliente por request_id
ERROR_TOPIC = "{prefix}/error/{client_id}" # Errores genéricos del servidor para un cliente


def random_uuid(rng):
    """UUID4 generado con el generador inyectado, reproducible si la semilla es fija."""
    return uuid.UUID(bytes=rng.bytes(16), version=4)


def random_choice(rng, options):
    return options[int(rng.integers(len(options)))]


def new_client_id(rng):
    return f"client-{random_uuid(rng)}"


def build_message_payload(client_id, timezone, message_type, sequence_number, request_id, rng):
    """
        Construye el mensaje de un cliente. Solo los tipos de MEDIA_ATTRIBUTES llevan atributo de medio,
        y nunca más de uno.
    """
    payload = {
        "type": message_type,
        "text": f"Message {sequence_number} from client {client_id}",
        "request_id": request_id,
        "sim_client_id": client_id,
        "timezone": timezone,
    }
    if message_type in MEDIA_ATTRIBUTES:
        attribute, template = MEDIA_ATTRIBUTES[message_type]
        payload[attribute] = template.format(random_uuid(rng))
    return payload
