def calculate_percentage(part: int, total: int) -> float:
    # Scale by 10000 in integer space so only the final division is float
    if total == 0:
        return 0
    percentage_scaled = (part * 10000) // total
    return percentage_scaled / 100


def to_token_amount(amount: int, decimals: int = 18) -> float:
    return amount / 10**decimals


def clamp_non_negative(value: int) -> int:
    return value if value > 0 else 0
