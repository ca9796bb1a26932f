import asyncio

from alert_bot import AlertBot


class StubChannel:
    configured = True

    def __init__(self):
        self.status_messages = []
        self.closed = False

    async def send(self, destination, message):
        return True

    async def send_status_message(self, destination, message):
        self.status_messages.append(message)
        return True

    async def close(self):
        self.closed = True


def test_request_stop_ends_run_and_cleans_up(tmp_path, monkeypatch):
    channel = StubChannel()
    closed = []

    async def initialize():
        return True

    async def close_fetcher():
        closed.append('fetcher')

    async def scenario():
        bot = AlertBot(alerts_file=str(tmp_path / 'alerts.json'))
        bot.telegram_bot = channel
        bot.engine.notifier = channel
        monkeypatch.setattr(bot, 'initialize', initialize)
        monkeypatch.setattr(bot.fetcher, 'close', close_fetcher)

        task = asyncio.create_task(bot.run())
        await asyncio.sleep(0.05)
        running = bot.scheduler.running
        bot.request_stop()
        await asyncio.wait_for(task, timeout=1)
        return running, bot.scheduler.running

    running_before, running_after = asyncio.run(scenario())

    assert running_before
    assert not running_after
    assert closed == ['fetcher']
    assert channel.closed
    assert 'Active Alerts: 0/0' in channel.status_messages[0]
