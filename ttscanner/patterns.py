from __future__ import annotations

import re

ANSI_ESCAPE_RX = re.compile(r"[\u001b\u009b][\[()#;?]*(?:[0-9]{1,4}(?:;[0-9]{0,4})*)?[0-9A-ORZcf-nqry=><]")

ANALYZER_LOCATION_RX = re.compile(r"^\s*(?P<path>[^:\s][^:]*?):(?P<line>\d+):(?P<column>\d+)")

DATA_URI_RX = re.compile(r"^data:(?P<mime>[^,;]*)(?P<params>(?:;[^,;]*)*?),(?P<data>.*)$", re.DOTALL)
