"""Names handed out to newly started agents."""

from __future__ import annotations

import random

_AGENT_NAMES = """john
emily
michael
sarah
david
jessica
christopher
ashley
matthew
amanda
james
elizabeth
robert
jennifer
william
rachel
daniel
laura
thomas
hannah
joshua
megan
ryan
nicole
andrew
stephanie
justin
rebecca
brandon
lisa
samuel
katherine
benjamin
samantha
nicholas
alexandra
tyler
victoria
alexander
olivia
anthony
emma
kevin
madison
brian
abigail
jason
isabella
eric
sophia
adam
ava
steven
mia
timothy
charlotte
mark
amelia
donald
harper
paul
evelyn
george
abigail
kenneth
emily
edward
elizabeth
brian
sofia
ronald
avery
kevin
ella
jason
scarlett
matthew
grace
gary
chloe
timothy
camila
jose
penelope
larry
layla
jeffrey
lillian
frank
nora
scott
zoey
eric
mila
stephen
aubrey
andrew
violet
raymond
claire
gregory
bella
joshua
aurora
jerry
lucy
dennis
anna
walter
sarah
peter
caroline
harold
genesis
douglas
emilia
henry
kennedy"""


def agent_names() -> list[str]:
    """Return every available agent name, in list order."""
    return _AGENT_NAMES.strip().split("\n")


def get_random_agent() -> str:
    """Return one agent name picked at random."""
    return random.choice(agent_names())