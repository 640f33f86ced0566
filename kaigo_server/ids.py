import uuid


def generate_id(prefix="id_"):
    return prefix + uuid.uuid4().hex
