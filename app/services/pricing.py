BASE_PRICES = {
    "renaissance": 149.99,
    "van_gogh": 179.99,
    "monet": 169.99,
}

# Canvas size -> surcharge over the style's base price
CANVAS_SURCHARGES = {
    "16x20": 0,
    "20x24": 50,
    "24x36": 100,
}

PROCESSING_TIME = "2-3 weeks"


def price_quote(style: str) -> dict:
    """Price quote for a hand-painted canvas in the given style."""
    base = BASE_PRICES[style]
    return {
        "estimatedPrice": base,
        "processingTime": PROCESSING_TIME,
        "canvasOptions": [
            {"size": size, "price": round(base + surcharge, 2)}
            for size, surcharge in CANVAS_SURCHARGES.items()
        ],
    }
