# functions/dice.py
"""
Dice roller. Expressions are NdM terms and integer modifiers joined by + or -,
with optional keep-highest/keep-lowest per term: 1d20+4, 4d6kh3, 2d8+1d6-1.
"""

import re
import random
import logging

logger = logging.getLogger(__name__)

ENABLED = True

MAX_DICE = 100
MAX_SIDES = 1000

AVAILABLE_FUNCTIONS = [
    'roll_dice',
]

TOOLS = [
    {
        "type": "function",
        "is_local": True,
        "function": {
            "name": "roll_dice",
            "description": "Roll dice. Supports NdM, keep highest/lowest (4d6kh3, 2d20kl1) and +/- modifiers (1d20+4).",
            "parameters": {
                "type": "object",
                "properties": {
                    "prompt": {
                        "type": "string",
                        "description": "Dice expression, e.g. 1d20+4"
                    }
                },
                "required": ["prompt"]
            }
        }
    },
]

_TERM = re.compile(r"([+-]?)(?:(\d*)d(\d+)(?:(kh|kl)(\d+))?|(\d+))", re.IGNORECASE)

_rng = random.SystemRandom()


def _roll_term(count, sides, keep_mode, keep):
    if count < 1 or count > MAX_DICE:
        raise ValueError(f"dice count must be between 1 and {MAX_DICE}")
    if sides < 1 or sides > MAX_SIDES:
        raise ValueError(f"dice sides must be between 1 and {MAX_SIDES}")

    rolls = [_rng.randint(1, sides) for _ in range(count)]
    kept = rolls
    if keep_mode:
        if keep < 1 or keep > count:
            raise ValueError(f"can't keep {keep} of {count} dice")
        ordered = sorted(rolls, reverse=(keep_mode == "kh"))
        kept = ordered[:keep]
    return rolls, kept


def roll_dice(prompt):
    """Roll a dice expression, return (description, total). Raises ValueError on bad input."""
    expr = re.sub(r"\s*([+-])\s*", r"\1", (prompt or "").strip())
    if not expr:
        raise ValueError("empty dice expression")

    pos = 0
    total = 0
    parts = []
    while pos < len(expr):
        match = _TERM.match(expr, pos)
        if not match or match.end() == pos:
            raise ValueError(f"invalid dice expression: {prompt!r}")
        if pos > 0 and not match.group(1):
            raise ValueError(f"invalid dice expression: {prompt!r}")

        sign = -1 if match.group(1) == "-" else 1
        op = "-" if sign < 0 else "+"
        if match.group(3):
            count = int(match.group(2) or 1)
            sides = int(match.group(3))
            keep_mode = (match.group(4) or "").lower()
            keep = int(match.group(5)) if match.group(5) else 0
            rolls, kept = _roll_term(count, sides, keep_mode, keep)
            subtotal = sum(kept)
            label = f"{count}d{sides}{keep_mode}{keep if keep_mode else ''}"
            shown = ", ".join(str(r) for r in rolls)
            if keep_mode:
                shown += f" -> kept {', '.join(str(r) for r in kept)}"
            parts.append(f"{op} {label} [{shown}]")
        else:
            subtotal = int(match.group(6))
            parts.append(f"{op} {subtotal}")

        total += sign * subtotal
        pos = match.end()

    text = " ".join(parts)
    if text.startswith("+ "):
        text = text[2:]
    return f"{prompt.strip()}: {text} = {total}", total


def execute(function_name, arguments, config):
    if function_name != "roll_dice":
        return f"Unknown function: {function_name}", False

    prompt = arguments.get('prompt', '')
    description, total = roll_dice(prompt)
    logger.info(f"Rolled {prompt!r} -> {total}")
    return description, True
