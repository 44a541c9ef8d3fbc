"""Serialize a completed session's records for download."""

import json

import pandas as pd

CSV_COLUMNS = ['Business Name', 'Address', 'Phone', 'Email', 'Website', 'Google Maps']


def records_to_frame(records) -> pd.DataFrame:
    rows = []
    for r in records:
        rows.append({
            'Business Name': r.name,
            'Address': r.address,
            'Phone': r.phone,
            'Email': '; '.join(r.emails),
            'Website': r.website,
            'Google Maps': r.maps_url,
        })
    return pd.DataFrame(rows, columns=CSV_COLUMNS)


def records_to_csv(records) -> str:
    return records_to_frame(records).to_csv(index=False)


def records_to_json(records) -> str:
    return json.dumps([r.to_dict() for r in records], indent=2, ensure_ascii=False)
