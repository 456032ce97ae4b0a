"""
Tidepool Kit Python SDK - Basic Usage Example

Logs in through the system browser, lists data and cleans up what it created.
Paste the redirect URL back into the terminal when the browser finishes.
"""

import asyncio
import logging
import uuid
import webbrowser
from datetime import datetime, timezone

from tidepool_kit import (
    CANCELED,
    DataSet,
    DataSetClient,
    Datum,
    DatumFilter,
    Deduplicator,
    Origin,
    RequestMalformedJSON,
    TidepoolClient,
    TidepoolConfig,
    TidepoolError,
)


class ConsoleUserAgent:
    """Opens the authorization URL and reads the redirect URL from stdin."""

    async def authorize(self, url: str, callback_scheme: str):
        webbrowser.open(url)
        redirect = await asyncio.to_thread(input, f"Paste the {callback_scheme}:// redirect URL (empty to cancel): ")
        return redirect.strip() or CANCELED


def sample_data() -> list:
    now = datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")
    return [
        Datum(
            type="cbg",
            time=now,
            origin=Origin(id=str(uuid.uuid4()), name="org.tidepool.tidepoolkit.example"),
            fields={"value": 120, "units": "mg/dL"},
        )
    ]


async def main() -> None:
    logging.basicConfig(level=logging.INFO)

    async with TidepoolClient(TidepoolConfig(debug=True)) as client:
        client.add_observer(lambda session: print(f"Session changed: {session!r}"))

        try:
            session = await client.login(ConsoleUserAgent())
            print(f"Logged in as: {session.user_id}")

            profile = await client.get_profile()
            print(f"Profile: {profile.full_name}")

            data_set = await client.create_data_set(DataSet(
                data_set_type=DataSet.CONTINUOUS,
                client=DataSetClient(name="org.tidepool.tidepoolkit.example", version="1.0.0"),
                deduplicator=Deduplicator(Deduplicator.NONE),
            ))

            batch = client.data_batch(data_set.upload_id)
            try:
                await batch.create(sample_data())
            except RequestMalformedJSON as e:
                for detail in e.errors:
                    print(f"Rejected {detail.source.pointer if detail.source else '?'}: {detail.detail}")

            data, malformed = await client.list_data(DatumFilter(data_set_id=data_set.upload_id))
            print(f"{len(data)} data, {len(malformed)} malformed")

            await batch.delete()
        except TidepoolError as e:
            print(f"Error: {e.message}")
        finally:
            await client.logout()


if __name__ == "__main__":
    asyncio.run(main())
