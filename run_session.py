"""Run an interactive realtime session against the relay."""

import asyncio

from officehours.main import main

if __name__ == "__main__":
    asyncio.run(main())
