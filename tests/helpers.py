class FakeLookup:
    """In-memory stand-in for the promotion store."""

    def __init__(self, promotion=None, user_redemptions=0, error=None):
        self.promotion = promotion
        self.user_redemptions = user_redemptions
        self.error = error
        self.user_calls = []

    def find_promotion_by_code(self, code):
        if self.error is not None:
            raise self.error
        if self.promotion is not None and self.promotion.code == code:
            return self.promotion
        return None

    def count_redemptions_for_user(self, promotion_id, user_id):
        self.user_calls.append((promotion_id, user_id))
        return self.user_redemptions
