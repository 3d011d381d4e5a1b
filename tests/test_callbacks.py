import threading
import unittest

from rtc_loadtest.callbacks import CallbackDispatcher, CallbackRegistry
from rtc_loadtest.events import Event


class TestCallbackRegistry(unittest.TestCase):
    
    def test_same_handler_registered_once(self):
        registry = CallbackRegistry()
        handler = lambda event: None
        registry.add("x", handler)
        registry.add("x", handler)
        self.assertEqual(registry.handlers_for("x"), [handler])
    
    def test_equal_but_distinct_handlers_are_kept(self):
        registry = CallbackRegistry()
        registry.add("x", lambda event: None)
        registry.add("x", lambda event: None)
        self.assertEqual(len(registry.handlers_for("x")), 2)
    
    def test_remove_drops_all_handlers_of_name(self):
        registry = CallbackRegistry()
        registry.add("x", lambda event: None)
        registry.add("x", lambda event: None)
        registry.add("y", lambda event: None)
        
        registry.remove("x")
        
        self.assertNotIn("x", registry)
        self.assertEqual(registry.handlers_for("x"), [])
        self.assertEqual(len(registry.handlers_for("y")), 1)


class TestCallbackDispatcher(unittest.TestCase):
    
    def setUp(self):
        self.dispatcher = CallbackDispatcher(max_workers=4)
    
    def tearDown(self):
        self.dispatcher.shutdown()
    
    def test_failing_handler_does_not_affect_others(self):
        received = []
        done = threading.Event()
        
        def broken(event):
            raise RuntimeError("boom")
        
        def good(event):
            received.append(event.name)
            done.set()
        
        event = Event("streamCreated", {"event": "streamCreated"})
        failed = self.dispatcher.submit(event, broken)
        self.dispatcher.submit(event, good)
        
        self.assertTrue(done.wait(2))
        self.assertIsNone(failed.result(timeout=2))
        self.assertEqual(received, ["streamCreated"])


if __name__ == '__main__':
    unittest.main()
