"""
Time formatting shared by the server clock and the client countdown
"""


def format_remaining(seconds: int) -> str:
    """Format seconds as HH:MM:SS"""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
