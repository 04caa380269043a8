# Copyright 2023 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Utilities for writing benchmarks."""

import google_benchmark as benchmark


def register_benchmark(name, setup):
  """Register a benchmark of a host-side call, e.g. calc or calc_diff."""
  def bench(state):
    f, args = setup()

    # call once to warm up the jitted differential models.
    f(*args)

    while state:
      f(*args)

  bench.__name__ = name
  return benchmark.register(bench)
