# fannu/domain/reference_codes.py

import re
import secrets
from typing import Callable

from fannu.domain.exceptions import ReferenceCodeExhaustedError

# No I, O, 0, 1: codes get read out over the phone.
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

MAX_ALLOCATION_ATTEMPTS = 5

REFERENCE_CODE_PATTERN = re.compile(rf"^BK-[{CODE_ALPHABET}]{{4}}$")
RECEIPT_ID_PATTERN = re.compile(rf"^RCP-[{CODE_ALPHABET}]{{8}}$")
PSP_REF_PATTERN = re.compile(rf"^TXN-[{CODE_ALPHABET}]{{10}}$")


def _random_code(length: int) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def generate_reference_code() -> str:
    return f"BK-{_random_code(4)}"


def generate_receipt_id() -> str:
    return f"RCP-{_random_code(8)}"


def generate_psp_ref() -> str:
    return f"TXN-{_random_code(10)}"


def allocate_code(
    generate: Callable[[], str],
    is_taken: Callable[[str], bool],
    attempts: int = MAX_ALLOCATION_ATTEMPTS,
) -> str:
    """
    Draw codes until one is free, at most `attempts` times.

    `is_taken` is usually a database existence check. The unique constraint
    on the column still backs this up for concurrent inserts.
    """
    for _ in range(attempts):
        code = generate()
        if not is_taken(code):
            return code
    raise ReferenceCodeExhaustedError(attempts)
