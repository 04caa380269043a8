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

# pylint: disable=invalid-name
"""Tests for discretax.controls."""

from absl.testing import absltest
from absl.testing import parameterized
import numpy as np

from discretax import controls

PARAMETRIZATIONS = (
    ('poly_zero', controls.ControlParametrizationPolyZero),
    ('poly_one', controls.ControlParametrizationPolyOne),
)


class ControlsTest(parameterized.TestCase):

  def setUp(self):
    super().setUp()
    self.rng = np.random.default_rng(0)

  def testPolyZero(self):
    control = controls.ControlParametrizationPolyZero(3)
    self.assertEqual((control.nw, control.nu), (3, 3))
    p = self.rng.standard_normal(3)
    for t in (0., 0.5, 1.):
      self.assertTrue(np.array_equal(control.value(t, p), p))
    self.assertTrue(np.array_equal(control.d_value(0.3, p), np.eye(3)))

  def testPolyOne(self):
    control = controls.ControlParametrizationPolyOne(2)
    self.assertEqual((control.nw, control.nu), (2, 4))
    p = np.array([1., 2., 3., 6.])
    self.assertTrue(np.allclose(control.value(0., p), [1., 2.]))
    self.assertTrue(np.allclose(control.value(0.5, p), [2., 4.]))
    self.assertTrue(np.allclose(control.value(1., p), [3., 6.]))
    J = control.d_value(0.25, p)
    self.assertEqual(J.shape, (2, 4))
    self.assertTrue(
        np.allclose(J, np.hstack([0.75 * np.eye(2), 0.25 * np.eye(2)])))

  @parameterized.named_parameters(*PARAMETRIZATIONS)
  def testValueInv(self, control_cls):
    control = control_cls(3)
    w = self.rng.standard_normal(3)
    for t in (0., 0.3, 0.5, 1.):
      p = control.value_inv(t, w)
      self.assertEqual(p.shape, (control.nu,))
      self.assertLess(np.linalg.norm(control.value(t, p) - w), 1e-12)

  def testPolyZeroRoundTrip(self):
    control = controls.ControlParametrizationPolyZero(3)
    p = self.rng.standard_normal(3)
    for t in (0., 0.3, 1.):
      self.assertTrue(np.array_equal(control.value_inv(t, control.value(t, p)),
                                     p))

  @parameterized.named_parameters(*PARAMETRIZATIONS)
  def testDValueIsJacobian(self, control_cls):
    control = control_cls(3)
    p = self.rng.standard_normal(control.nu)
    dp = self.rng.standard_normal(control.nu)
    t = 0.3
    # value is linear in p.
    self.assertLess(
        np.linalg.norm(control.value(t, p + dp) - control.value(t, p) -
                       control.d_value(t, p) @ dp), 1e-12)

  @parameterized.named_parameters(*PARAMETRIZATIONS)
  def testMultiplyByDValue(self, control_cls):
    control = control_cls(3)
    p = self.rng.standard_normal(control.nu)
    A = self.rng.standard_normal((5, 3))
    t = 0.7
    J = control.d_value(t, p)
    self.assertLess(
        np.linalg.norm(control.multiply_by_d_value(t, p, A) - A @ J), 1e-12)
    B = self.rng.standard_normal((3, 4))
    self.assertLess(
        np.linalg.norm(control.multiply_d_value_transpose_by(t, p, B) -
                       J.T @ B), 1e-12)
    b = self.rng.standard_normal(3)
    self.assertLess(
        np.linalg.norm(control.multiply_d_value_transpose_by(t, p, b) -
                       J.T @ b), 1e-12)

  @parameterized.named_parameters(*PARAMETRIZATIONS)
  def testConvertBoundsAreSound(self, control_cls):
    control = control_cls(2)
    w_lb, w_ub = np.array([-1., -2.]), np.array([1., 0.5])
    u_lb, u_ub = control.convert_bounds(w_lb, w_ub)
    self.assertEqual(u_lb.shape, (control.nu,))
    self.assertEqual(u_ub.shape, (control.nu,))
    for _ in range(20):
      p = self.rng.uniform(u_lb, u_ub)
      for t in np.linspace(0., 1., 5):
        w = control.value(t, p)
        self.assertTrue(np.all(w >= w_lb - 1e-12))
        self.assertTrue(np.all(w <= w_ub + 1e-12))

  def testConvertUnboundedBounds(self):
    control = controls.ControlParametrizationPolyOne(1)
    u_lb, u_ub = control.convert_bounds(np.array([-np.inf]),
                                        np.array([np.inf]))
    self.assertTrue(np.all(np.isneginf(u_lb)))
    self.assertTrue(np.all(np.isposinf(u_ub)))

  @parameterized.named_parameters(*PARAMETRIZATIONS)
  def testResize(self, control_cls):
    control = control_cls(2)
    ratio = control.nu // control.nw
    control.resize(5)
    self.assertEqual(control.nw, 5)
    self.assertEqual(control.nu, ratio * 5)
    self.assertEqual(control.value(0., np.zeros(control.nu)).shape, (5,))

  @parameterized.named_parameters(*PARAMETRIZATIONS)
  def testWrongSizesRaise(self, control_cls):
    control = control_cls(2)
    with self.assertRaises(ValueError):
      control.value(0., np.zeros(control.nu + 1))
    with self.assertRaises(ValueError):
      control.value_inv(0., np.zeros(3))
    with self.assertRaises(ValueError):
      control.d_value(0., np.zeros(control.nu + 1))
    with self.assertRaises(ValueError):
      control.multiply_by_d_value(0., np.zeros(1), np.zeros((2, 2)))
    with self.assertRaises(ValueError):
      control.convert_bounds(np.zeros(1), np.zeros(2))

  def testStr(self):
    self.assertEqual(
        str(controls.ControlParametrizationPolyOne(3)),
        'ControlParametrizationPolyOne {nw=3, nu=6}')


if __name__ == '__main__':
  absltest.main()
