#!/usr/bin/env python3
"""Validate local amenity reservation environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.domain.models import ReservationStatus, TimeWindow
from backend.repository.data_repository import DataRepository
from backend.services.expiration_service import ExpirationSweepService
from backend.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="amenities-env-")

    # CHECK 1: Python version >= 3.11
    if sys.version_info >= (3, 11):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.11",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("httpx", "httpx"),
        ("dotenv", "python-dotenv"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    base_settings = get_settings()

    # CHECK 3: Building time zone resolvable
    try:
        ZoneInfo(base_settings.building_timezone)
        ok, line = _print_result("Building time zone", True, f": {base_settings.building_timezone}")
    except (ZoneInfoNotFoundError, ValueError) as exc:
        ok, line = _print_result("Building time zone", False, str(exc))
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            base_settings,
            database_path=Path(temp_dir) / "amenities_validation.db",
        )
        repository = DataRepository(validation_settings)

        # CHECK 4: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except RuntimeError as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Demo catalog seeding
        try:
            repository.seed_demo_data()
            amenity_count = len(repository.list_amenities())
            if amenity_count != 5:
                raise RuntimeError(f"expected 5 amenities, got {amenity_count}")
            ok, line = _print_result("Demo catalog: 5 amenities", True)
        except RuntimeError as exc:
            ok, line = _print_result("Demo catalog", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 6: Expiration sweep round trip
        try:
            now = datetime.now(timezone.utc)
            reservation = repository.insert_reservation(
                user_id=2,
                amenity_id=1,
                window=TimeWindow(start=now - timedelta(hours=1), end=now - timedelta(minutes=5)),
                status=ReservationStatus.CONFIRMED,
            )
            finalized = ExpirationSweepService(repository).run_once(now)
            stored = repository.get_reservation(reservation.reservation_id)
            if finalized != 1 or stored is None or stored.status is not ReservationStatus.FINALIZED:
                raise RuntimeError(f"sweep finalized {finalized} reservation(s)")
            ok, line = _print_result("Expiration sweep", True)
        except RuntimeError as exc:
            ok, line = _print_result("Expiration sweep", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Amenity Reservations Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
