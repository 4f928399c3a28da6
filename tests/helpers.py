"""Small node types used by the engine tests."""

from hvacflow.engine.nodes import Node
from hvacflow.engine.sockets import EXEC, STRING


class CountingSource(Node):
    type_tag = "test.counting_source"

    def __init__(self, node_id, data=None):
        super().__init__(node_id, data)
        self.calls = 0

    def declare_outputs(self):
        return {"value": STRING}

    async def produce(self, output_name, ctx):
        self.calls += 1
        return self.data.get("value", "hello")


class SplitSource(Node):
    """Supply and return temperatures from one reading."""

    type_tag = "test.split_source"

    def __init__(self, node_id, data=None):
        super().__init__(node_id, data)
        self.calls = 0

    def declare_outputs(self):
        return {"supply": STRING, "return": STRING}

    async def produce(self, output_name, ctx):
        self.calls += 1
        ctx.set_output("supply", "55C")
        ctx.set_output("return", "40C")
        return ctx.outputs[output_name]


class PassThrough(Node):
    type_tag = "test.pass_through"

    def declare_inputs(self):
        return {"value": STRING}

    def declare_outputs(self):
        return {"value": STRING}

    async def produce(self, output_name, ctx):
        return ctx.inputs["value"]


class BrokenSource(Node):
    type_tag = "test.broken_source"

    def declare_outputs(self):
        return {"value": STRING}

    async def produce(self, output_name, ctx):
        raise RuntimeError("sensor offline")


class Recorder(Node):
    type_tag = "test.recorder"

    def declare_inputs(self):
        return {"exec": EXEC, "value": STRING}

    def declare_outputs(self):
        return {"exec": EXEC, "seen": STRING}

    async def run(self, pulse_input, forward, ctx):
        ctx.set_output("seen", ctx.inputs["value"])
        forward("exec")


class Failing(Node):
    type_tag = "test.failing"

    def declare_inputs(self):
        return {"exec": EXEC}

    def declare_outputs(self):
        return {"exec": EXEC, "seen": STRING}

    async def run(self, pulse_input, forward, ctx):
        raise RuntimeError("compressor fault")


class DoubleForward(Node):
    type_tag = "test.double_forward"

    def declare_inputs(self):
        return {"exec": EXEC}

    def declare_outputs(self):
        return {"exec": EXEC}

    async def run(self, pulse_input, forward, ctx):
        forward("exec")
        forward("exec")


class Join(Node):
    type_tag = "test.join"

    def declare_inputs(self):
        return {"left": EXEC, "right": EXEC}

    def declare_outputs(self):
        return {"exec": EXEC}

    async def run(self, pulse_input, forward, ctx):
        forward("exec")


class FakeDispatcher:
    """Records dispatched actions and answers with canned results."""

    def __init__(self, results=None):
        self.results = results or {}
        self.calls = []

    async def dispatch(self, node_type, node_data):
        from hvacflow.service.actions import NodeResult

        self.calls.append((node_type, dict(node_data)))
        result = self.results.get(node_type)
        if result is None:
            return NodeResult(success=True, payload={})
        return result
