import threading

from core.coordination import BackgroundDownloadTask, ThreadBackgroundExecutor, build_notification
from core.coordination.event_bus import Event, EventBus, EventType
from core.models import ChapterRef, DownloadJob, JobStatus, MangaRef
from tests.conftest import wait_for

MANGA = MangaRef('m1', title='Demo Manga', source='demo')


def job(chapter_id, status, progress=0, total=0):
    created = DownloadJob.create(MANGA, ChapterRef(chapter_id, 1, f'Chapter {chapter_id}'))
    created.status = status
    created.progress = progress
    created.total = total
    return created


def test_notification_for_single_download():
    notification = build_notification([
        job('1', JobStatus.DOWNLOADING, progress=5, total=20),
        job('2', JobStatus.QUEUED),
        job('3', JobStatus.QUEUED),
    ])

    assert notification.title == 'Demo Manga'
    assert notification.description == 'Chapter 1: 5/20 (25%)\n+2 more in queue'
    assert notification.progress == 25


def test_notification_for_multiple_downloads():
    notification = build_notification([
        job('1', JobStatus.DOWNLOADING, progress=1, total=2),
        job('2', JobStatus.DOWNLOADING, progress=0, total=4),
    ])

    assert notification.title == 'Downloading 2 chapters...'
    assert notification.description.splitlines() == ['Chapter 1: 1/2 (50%)', 'Chapter 2: 0/4 (0%)']
    assert notification.progress is None


def test_notification_for_queued_only_and_idle():
    notification = build_notification([job('1', JobStatus.QUEUED), job('2', JobStatus.QUEUED)])
    assert (notification.title, notification.description) == ('Downloading manga...', '2 chapters in queue')

    assert build_notification([]) is None
    assert build_notification([job('1', JobStatus.PAUSED)]) is None


class FakeOrchestrator:
    def __init__(self, queues, has_more=True):
        self.queues = list(queues)
        self.has_more = has_more
        self.background_calls = 0

    def get_queue(self):
        return self.queues.pop(0) if len(self.queues) > 1 else self.queues[0]

    def process_background_downloads(self):
        self.background_calls += 1
        return self.has_more


class RecordingExecutor:
    def __init__(self):
        self.running = True
        self.notifications = []

    def start(self, loop_fn):
        self.running = True
        loop_fn()

    def stop(self):
        self.running = False

    def update_notification(self, title, description, progress=None):
        self.notifications.append((title, description, progress))

    def is_running(self):
        return self.running


def test_run_once_updates_notification_and_processes():
    orchestrator = FakeOrchestrator([[job('1', JobStatus.QUEUED)]])
    executor = RecordingExecutor()
    task = BackgroundDownloadTask(orchestrator, executor)

    assert task.run_once()
    assert executor.notifications == [('Downloading manga...', '1 chapters in queue', None)]
    assert orchestrator.background_calls == 1


def test_loop_stops_when_orchestrator_has_nothing_left():
    orchestrator = FakeOrchestrator([[job('1', JobStatus.DOWNLOADING, progress=1, total=2)]], has_more=False)
    executor = RecordingExecutor()
    executor.running = False
    task = BackgroundDownloadTask(orchestrator, executor, poll_interval=0)

    assert not task.run_once()
    task.start()

    assert not executor.is_running()
    assert orchestrator.background_calls == 2


def test_loop_stops_when_queue_is_empty():
    orchestrator = FakeOrchestrator([
        [job('1', JobStatus.QUEUED)],
        [job('1', JobStatus.DOWNLOADING, progress=1, total=2)],
        [],
    ])
    executor = RecordingExecutor()
    executor.running = False

    BackgroundDownloadTask(orchestrator, executor, poll_interval=0).start()

    assert not executor.is_running()
    assert orchestrator.background_calls == 2
    assert executor.notifications[1][2] == 50


def test_thread_executor_runs_loop_in_background():
    notifications = []
    executor = ThreadBackgroundExecutor(on_notification=lambda *args: notifications.append(args))
    orchestrator = FakeOrchestrator([[job('1', JobStatus.QUEUED)], []])
    task = BackgroundDownloadTask(orchestrator, executor, poll_interval=0.01)

    task.start()
    assert wait_for(lambda: not executor.is_running())
    assert notifications == [('Downloading manga...', '1 chapters in queue', None)]


def test_event_bus_dispatches_in_worker_thread():
    bus = EventBus()
    received = []
    done = threading.Event()

    def on_deleted(event):
        received.append((event.data['chapter_id'], threading.current_thread().name))
        done.set()

    bus.subscribe(EventType.CHAPTER_DELETED, on_deleted)
    bus.start()
    try:
        bus.publish(Event(type=EventType.CHAPTER_DELETED, data={'chapter_id': 'c1'}))
        assert done.wait(5)
    finally:
        bus.stop()

    assert received == [('c1', 'EventBus-Worker')]
    bus.unsubscribe(EventType.CHAPTER_DELETED, on_deleted)
    bus.publish(Event(type=EventType.CHAPTER_DELETED, data={'chapter_id': 'c2'}))
    assert len(received) == 1


def test_event_bus_stop_delivers_queued_events_and_isolates_failures():
    bus = EventBus(logger=lambda message, level: None)
    gate = threading.Event()
    received = []

    def slow(event):
        gate.wait(5)
        received.append(event.data['chapter_id'])

    def broken(event):
        raise RuntimeError("listener failed")

    bus.subscribe(EventType.CHAPTER_COMPLETED, broken)
    bus.subscribe(EventType.CHAPTER_COMPLETED, slow)
    bus.start()
    assert bus.is_running
    for chapter_id in ('c1', 'c2', 'c3'):
        bus.publish(Event(type=EventType.CHAPTER_COMPLETED, data={'chapter_id': chapter_id}))
    gate.set()
    bus.stop()

    assert not bus.is_running
    assert received == ['c1', 'c2', 'c3']
