"""
PAN and CVV generation.

A PAN (Primary Account Number) is built from three parts:

    [ BIN (issuer prefix) ][ random body digits ][ Luhn check digit ]

The check digit makes every generated number pass the Luhn checksum used by
card networks to catch typos. CVVs are three random digits (100–999).

Randomness comes from an injected provider with the random.Random API.
The default is secrets.SystemRandom, which reads from the operating
system's CSPRNG and holds no shared state, so one generator can be used
by concurrent requests.
"""

import random
import secrets

from card_issuer.exceptions import InvalidArgumentError

MIN_BIN_LENGTH = 6
MIN_PAN_LENGTH = 13
MAX_PAN_LENGTH = 19


def luhn_check_digit(partial: str) -> int:
    """
    Compute the Luhn check digit for a number without its check digit.

    Walking from the rightmost digit, every second digit (starting with the
    rightmost one) is doubled, with 9 subtracted when the result exceeds 9.
    The check digit brings the total up to a multiple of ten.
    """
    total = 0
    double = True
    for char in reversed(partial):
        digit = int(char)
        if double:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
        double = not double
    return (10 - total % 10) % 10


def is_luhn_valid(number: str) -> bool:
    """Return True if the number (check digit included) passes Luhn validation."""
    if len(number) < 2 or not number.isdigit():
        return False
    return luhn_check_digit(number[:-1]) == int(number[-1])


class PanGenerator:
    """Generates Luhn-valid card numbers and verification codes."""

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or secrets.SystemRandom()

    def generate_pan(self, bin: str, length: int = 16) -> str:
        """
        Generate a Luhn-valid PAN that starts with the given BIN.

        Args:
            bin: Bank Identification Number, at least 6 digits.
            length: Total PAN length, 13 to 19 digits.

        Returns:
            The full PAN including the trailing check digit.

        Raises:
            InvalidArgumentError: If the BIN or length is out of range.
        """
        if not bin or not bin.isdigit() or len(bin) < MIN_BIN_LENGTH:
            raise InvalidArgumentError(f"BIN must have at least {MIN_BIN_LENGTH} digits")
        if length < MIN_PAN_LENGTH or length > MAX_PAN_LENGTH:
            raise InvalidArgumentError(
                f"PAN length must be between {MIN_PAN_LENGTH} and {MAX_PAN_LENGTH}"
            )
        if len(bin) >= length:
            raise InvalidArgumentError("BIN must be shorter than the PAN length")

        body_length = length - len(bin) - 1
        body = "".join(str(self._rng.randrange(10)) for _ in range(body_length))
        partial = bin + body
        return partial + str(luhn_check_digit(partial))

    def generate_cvv(self) -> str:
        """Generate a 3-digit CVV, uniform over 100–999."""
        return str(self._rng.randint(100, 999))
