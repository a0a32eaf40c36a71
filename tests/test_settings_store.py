from fleetdispatch.settings_store import SMS_FORWARD_NUMBER, TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID


def test_missing_setting_is_none(store):
    assert store.get(SMS_FORWARD_NUMBER) is None


def test_set_overwrites(store):
    store.set(SMS_FORWARD_NUMBER, "+111")
    store.set(SMS_FORWARD_NUMBER, "+222")
    assert store.get(SMS_FORWARD_NUMBER) == "+222"


def test_set_many(store):
    store.set_many({TELEGRAM_BOT_TOKEN: "token", TELEGRAM_CHAT_ID: "42"})
    assert store.get_many([TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID, SMS_FORWARD_NUMBER]) == {
        TELEGRAM_BOT_TOKEN: "token",
        TELEGRAM_CHAT_ID: "42",
        SMS_FORWARD_NUMBER: None,
    }
