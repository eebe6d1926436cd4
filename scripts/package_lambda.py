#!/usr/bin/env python3
"""
Lambda packaging helper.

Builds ``dist/<function>.zip`` with the function's modules and the shared
helpers at the archive root, so the handler is configured as
``handler.lambda_handler``. Third-party dependencies are expected to come
from a Lambda layer.
"""
from __future__ import annotations

import argparse
import sys
import zipfile
from pathlib import Path
from typing import Iterable, List


REPO_ROOT = Path(__file__).resolve().parents[1]
LAMBDA_ROOT = REPO_ROOT / "backend" / "lambdas"
SHARED_PACKAGE = "shared"


def _python_files(directory: Path) -> Iterable[Path]:
    for path in sorted(directory.rglob("*.py")):
        if "__pycache__" in path.parts:
            continue
        yield path


def build_package(function: str, output_dir: Path, *, lambda_root: Path = LAMBDA_ROOT) -> Path:
    function_dir = lambda_root / function
    if not function_dir.is_dir():
        raise FileNotFoundError(f"Unknown Lambda function: {function}")

    output_dir.mkdir(parents=True, exist_ok=True)
    zip_path = output_dir / f"{function}.zip"
    with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for path in _python_files(function_dir):
            archive.write(path, path.relative_to(function_dir).as_posix())
        for path in _python_files(lambda_root / SHARED_PACKAGE):
            archive.write(path, path.relative_to(lambda_root).as_posix())
    return zip_path


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "functions",
        nargs="*",
        default=["explain_pdf"],
        help="Lambda function directories under backend/lambdas (default: explain_pdf).",
    )
    parser.add_argument(
        "--output",
        default=str(REPO_ROOT / "dist"),
        help="Directory that receives the zip archives.",
    )
    args = parser.parse_args()

    built: List[Path] = []
    for function in args.functions:
        try:
            built.append(build_package(function, Path(args.output)))
        except FileNotFoundError as exc:
            print(str(exc), file=sys.stderr)
            return 1

    for path in built:
        print(f"built {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
