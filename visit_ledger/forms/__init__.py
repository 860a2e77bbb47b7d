"""WTForms used by the JSON API."""
