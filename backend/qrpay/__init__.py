"""QR payment engine: TLV codec, payment sessions, price oracle and settlement."""
