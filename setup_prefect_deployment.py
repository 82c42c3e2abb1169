#!/usr/bin/env python3
"""
Serve the census reference flows on a schedule.
Imports run weekly; cache maintenance runs every 6 hours.
"""

from datetime import timedelta

from prefect import serve

from prefect_flows import cache_maintenance_flow, census_reference_flow

if __name__ == "__main__":
    print("Setting up Prefect deployments for the census reference store")

    import_deployment = census_reference_flow.to_deployment(
        name="census-reference-weekly",
        interval=timedelta(weeks=1),
        tags=["census", "geography", "catalog"],
        description="Imports geographies and the dataset catalog every week"
    )

    maintenance_deployment = cache_maintenance_flow.to_deployment(
        name="census-cache-maintenance",
        interval=timedelta(hours=6),
        tags=["census", "cache"],
        description="Deletes expired cache entries and re-analyzes hot tables every 6 hours"
    )

    print("\nStarting Prefect server...")
    print("Press Ctrl+C to stop the scheduler.")
    print("\nNote: In production, you would use 'prefect deploy' and run a Prefect server separately.")

    serve(import_deployment, maintenance_deployment)
