import io
import json

import pytest
from rich.console import Console

from ttscanner.console import RichLogger

# dist/app.js line 1 col 1 -> src/app.ts 1:1, line 3 col 5 -> src/app.ts 10:3
APP_MAPPINGS = "AAAA;;IASE"


def make_source_map(sources, mappings=APP_MAPPINGS, file="app.js"):
    return {
        "version": 3,
        "file": file,
        "sources": list(sources),
        "names": [],
        "mappings": mappings,
    }


def csp_payload(source_file, line, column, sample=""):
    return json.dumps(
        {
            "csp-report": {
                "document-uri": "http://127.0.0.1:8080/",
                "violated-directive": "require-trusted-types-for",
                "source-file": source_file,
                "line-number": line,
                "column-number": column,
                "script-sample": sample,
            }
        }
    )


@pytest.fixture
def logger():
    return RichLogger(console=Console(record=True, width=200, file=io.StringIO()), verbose=True)


@pytest.fixture
def project(tmp_path):
    dist = tmp_path / "dist"
    dist.mkdir()
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.ts").write_text("// authored\n", encoding="utf-8")
    (dist / "app.js").write_text("var a;\n\n    el.innerHTML = x;\n", encoding="utf-8")
    (dist / "app.js.map").write_text(json.dumps(make_source_map(["../src/app.ts"])), encoding="utf-8")
    return tmp_path
