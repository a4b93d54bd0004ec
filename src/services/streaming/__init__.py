"""Stream session storage, resumption and client-side decoding."""
