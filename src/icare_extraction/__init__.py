"""ICAREdata extraction client: per-patient mCODE extraction and FHIR messaging."""
