"""
Constants used across the registration and fee engine.
"""

from decimal import Decimal

# Credit-card processing surcharge, percent of the base fee
DEFAULT_CC_PROCESSING_PERCENT = Decimal("3.5")

# Money is kept to cents
MONEY_QUANTUM = Decimal("0.01")
ZERO = Decimal("0.00")

# Keys checked in Job.json_options when the mode token is absent
REGISTRATION_MODE_OPTION_KEYS = ("registrationMode", "profileMode", "regProfileType", "registrationType")

# Wizard tab the client should show next
NEXT_TAB_TEAM = "Team"
NEXT_TAB_FORMS = "Forms"
NEXT_TAB_PAYMENT = "Payment"

# Per-team result messages
MSG_TEAM_NOT_FOUND = "Team not found."
MSG_TEAM_FULL = "Team roster is full."
MSG_MULTI_TEAM_NOT_ALLOWED = "Multiple teams not allowed for this job."
MSG_CREATED = "Registration created, pending payment."
MSG_UPDATED = "Registration updated."
MSG_TEAM_CHANGED = "Registration updated (team changed)."
MSG_TEAM_CHANGED_SAME_COST = "Registration updated (team changed - same cost)."
MSG_TEAM_CHANGE_BLOCKED = "Registration updated (team change blocked after payment)."
MSG_FORKED = "New registration created (existing paid kept)."
