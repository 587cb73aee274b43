"""
Competition ops tool.

Runs the same lifecycle operations the scheduler runs, directly against the
configured database. Safe to use while the API (and its scheduler) is up.

Usage:
    python manage_competitions.py create-today
    python manage_competitions.py create-tomorrow
    python manage_competitions.py update-statuses
    python manage_competitions.py end
    python manage_competitions.py view [--limit 10]
"""
import argparse
import asyncio

from motor.motor_asyncio import AsyncIOMotorClient

from petcontest.config import settings
from petcontest.database import create_indexes
from petcontest.logging_setup import configure_logging
from petcontest.models.competition import WINNER_POSITIONS
from petcontest.services.competition.lifecycle import CompetitionLifecycleService
from petcontest.services.competition.queries import CompetitionQueryService


def print_competition(competition: dict):
    print(f"  Date:         {competition['date']}")
    print(f"  ID:           {competition['_id']}")
    print(f"  Status:       {competition['status']}")
    print(f"  Entry fee:    {competition.get('entry_fee', 0)}")
    print(f"  Prize pool:   {competition.get('prize_pool', 0)}")
    print(f"  Entries:      {competition.get('total_entries', 0)}")
    print(f"  Votes:        {competition.get('total_votes', 0)}")
    print(f"  Entry window: {competition['entry_start_time']} -> {competition['entry_end_time']}")
    print(f"  Voting:       {competition['start_time']} -> {competition['end_time']}")

    winners = competition.get("winners") or {}
    for position in WINNER_POSITIONS:
        slot = winners.get(position)
        if slot:
            pet_name = (slot.get("entry") or {}).get("pet_name", "?")
            print(f"  {position.title():<13} {pet_name} (user {slot['user_id']}) - {slot['votes']} votes, {slot['prize']} tokens")


async def run(command: str, limit: int):
    client = AsyncIOMotorClient(settings.mongodb_url)
    db = client[settings.database_name]
    try:
        await create_indexes(db)
        lifecycle = CompetitionLifecycleService(db, settings=settings)

        if command == "create-today":
            competition = await lifecycle.create_daily_competition()
            print("Today's competition:")
            print_competition(competition)

        elif command == "create-tomorrow":
            competition = await lifecycle.create_tomorrow_competition()
            print("Tomorrow's competition:")
            print_competition(competition)

        elif command == "update-statuses":
            activated = await lifecycle.update_competition_statuses()
            print(f"Activated {activated} competition(s)")

        elif command == "end":
            competition = await lifecycle.end_competition_and_select_winners()
            if competition is None:
                print("No competition to end at this time")
            else:
                print("Competition ended:")
                print_competition(competition)

        elif command == "view":
            result = await CompetitionQueryService(db).list_competitions(limit=limit)
            print(f"{result['pagination']['total']} competition(s)")
            for competition in result["competitions"]:
                print("-" * 60)
                print_competition(competition)
    finally:
        client.close()


def main():
    parser = argparse.ArgumentParser(description="Run competition lifecycle operations")
    parser.add_argument(
        "command",
        choices=["create-today", "create-tomorrow", "update-statuses", "end", "view"]
    )
    parser.add_argument("--limit", type=int, default=10, help="Competitions to show with 'view'")
    args = parser.parse_args()

    configure_logging()
    asyncio.run(run(args.command, args.limit))


if __name__ == "__main__":
    main()
