"""
Constants used across the match session and rating engine.
"""

# ELO calculation constants
K = 32  # K-factor shared by every match type
INITIAL_RATING = 1500
RATING_FLOOR = 0

# Rating tiers shown next to a player's rating (lower bound, name)
RATING_TIERS = [
    (2200, "Grandmaster"),
    (2000, "Master"),
    (1800, "Diamond"),
    (1600, "Platinum"),
    (1400, "Gold"),
    (1200, "Silver"),
    (0, "Bronze"),
]

# Players per team by match type
SINGLES_MATCH_TYPES = ("MS", "WS")
DOUBLES_MATCH_TYPES = ("MD", "WD", "XD")

# Session defaults (game settings)
DEFAULT_ENTRY_FEE_POINTS = 20
DEFAULT_ENTRY_FEE_FEATHERS = 10
DEFAULT_WINNER_POINTS = 100
SESSION_PASSWORD_PATTERN = r"[0-9]{6}"

# Invitations
INVITATION_TTL_HOURS = 24

# Transaction retry policy for serialization failures / lost races
MAX_TRANSACTION_ATTEMPTS = 3
TRANSACTION_RETRY_BASE_DELAY = 0.05  # seconds, doubled after each attempt

# Pagination
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
