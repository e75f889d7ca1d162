def is_valid_order_number(number: bytes | str) -> bool:
    """Luhn check over a decimal order number. Empty input and non-digits are invalid."""
    if isinstance(number, bytes):
        try:
            number = number.decode("utf-8")
        except UnicodeDecodeError:
            return False
    if not number or not number.isascii() or not number.isdigit():
        return False
    total = 0
    for i, ch in enumerate(reversed(number)):
        d = ord(ch) - 48
        if i % 2 == 1:
            d *= 2
            if d > 9:
                d -= 9
        total += d
    return total % 10 == 0
