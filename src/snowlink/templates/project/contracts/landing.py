"""
Landing-zone table contracts.

Columns are loaded by position: the column order here must match the
column order of the CSV files dropped into the bucket.
"""

from snowlink.core import LandingTable, IntegerField, StringField, DateField


class OrdersDataLz(LandingTable):
    """Raw order events, one row per line of each ingested file."""

    order_id = IntegerField(nullable=False)
    product = StringField(max_length=100)
    quantity = IntegerField()
    order_status = StringField(max_length=30)
    order_date = DateField()

    class Meta:
        description = "Orders landing zone, loaded by Snowpipe from GCS"
