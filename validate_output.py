"""
Validates FlashScore snapshot JSON output structure
"""

import json
import sys
from pathlib import Path

from scraper import OUTPUT_DIR, incomplete_leagues, count_teams

COUNTRY_KEYS = {"slug", "url", "leagues"}
LEAGUE_KEYS = {"slug", "url", "teams"}
TEAM_KEYS = {"id", "name", "url"}

def validate_snapshot(snapshot) -> list:
    """Returns a list of shape problems, empty if the snapshot looks right"""
    if not isinstance(snapshot, dict):
        return ["top level is not an object"]

    problems = []
    for country_name, country in snapshot.items():
        if not isinstance(country, dict):
            problems.append(f"{country_name}: not an object")
            continue
        missing = COUNTRY_KEYS - set(country)
        if missing:
            problems.append(f"{country_name}: missing {sorted(missing)}")
            continue
        if not isinstance(country["leagues"], dict):
            problems.append(f"{country_name}: leagues is not an object")
            continue

        for league_name, league in country["leagues"].items():
            where = f"{country_name} / {league_name}"
            if not isinstance(league, dict):
                problems.append(f"{where}: not an object")
                continue
            missing = LEAGUE_KEYS - set(league)
            if missing:
                problems.append(f"{where}: missing {sorted(missing)}")
                continue
            if not isinstance(league["teams"], list):
                problems.append(f"{where}: teams is not a list")
                continue
            for team in league["teams"]:
                if not isinstance(team, dict) or TEAM_KEYS - set(team):
                    problems.append(f"{where}: malformed team record {team!r}")
                    break
    return problems

def validate_snapshots(output_dir: Path = OUTPUT_DIR):
    json_files = sorted(output_dir.glob("flashscore-final-*.json"))

    if not json_files:
        print(f"❌ No snapshot files found in {output_dir}/")
        sys.exit(1)

    print(f"\n{'='*80}")
    print("🔍 VALIDATING SNAPSHOT STRUCTURE")
    print(f"{'='*80}\n")

    all_valid = True

    for json_file in json_files:
        print(f"📄 Checking: {json_file.name}")

        try:
            with open(json_file, 'r', encoding='utf-8') as f:
                snapshot = json.load(f)
        except (OSError, ValueError) as e:
            print(f"  ❌ Error reading file: {e}")
            all_valid = False
            continue

        problems = validate_snapshot(snapshot)
        if problems:
            print(f"  ❌ {len(problems)} structure problem(s)")
            for problem in problems[:20]:
                print(f"     {problem}")
            all_valid = False
            continue

        leagues = sum(len(country["leagues"]) for country in snapshot.values())
        teams = sum(
            count_teams(league)
            for country in snapshot.values()
            for league in country["leagues"].values()
        )
        missing = incomplete_leagues(snapshot)
        print(f"  ✓ {len(snapshot)} countries, {leagues} leagues, {teams} teams")
        if missing:
            print(f"  ⚠️  {len(missing)} leagues without teams")

    print(f"\n{'='*80}")
    if all_valid:
        print("✅ VALIDATION PASSED")
    else:
        print("❌ VALIDATION FAILED")
    print(f"{'='*80}\n")

    sys.exit(0 if all_valid else 1)

if __name__ == "__main__":
    validate_snapshots()
