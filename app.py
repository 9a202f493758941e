import asyncio

from studymate_client import StudyMate


async def main() -> None:
    ai = StudyMate()

    # Credentials come from `python cli.py signin you@example.com`.
    async for chunk in ai.astream_ask("Summarise chapter 3 of my notes"):
        print(chunk, end="", flush=True)
    print()


if __name__ == "__main__":
    asyncio.run(main())
