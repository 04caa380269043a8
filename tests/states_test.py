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
"""Tests for discretax.states."""

from absl.testing import absltest
from absl.testing import parameterized
import jax
import jax.numpy as jnp
import numpy as np

from discretax import states
from discretax.states import AssignmentOp
from discretax.states import Jcomponent

jax.config.update('jax_enable_x64', True)


def jacobian_fd(fun, x, h=1e-6):
  """Central finite difference Jacobian, of shape fun(x).shape + x.shape."""
  cols = [(np.asarray(fun(x + h * e)) - np.asarray(fun(x - h * e))) / (2. * h)
          for e in np.eye(x.shape[0])]
  return np.stack(cols, axis=-1)


def make_state(name):
  return {'vector': lambda: states.StateVector(4), 'so3': states.StateSO3}[
      name]()


class StatesTest(parameterized.TestCase):

  def setUp(self):
    super().setUp()
    self.rng = np.random.default_rng(0)

  def tangent(self, state, scale=0.5):
    return scale * self.rng.standard_normal(state.ndx)

  @parameterized.parameters('vector', 'so3')
  def testDimensions(self, name):
    state = make_state(name)
    self.assertEqual(state.ndx, 2 * state.nv)
    self.assertEqual(state.nq + state.nv, state.nx)
    self.assertEqual(state.zero().shape, (state.nx,))
    self.assertEqual(state.rand(1).shape, (state.nx,))

  @parameterized.parameters('vector', 'so3')
  def testDiffInvertsIntegrate(self, name):
    state = make_state(name)
    x = state.rand(self.rng)
    dx = self.tangent(state)
    y = np.asarray(state.integrate(x, dx))
    self.assertLess(np.linalg.norm(np.asarray(state.diff(x, y)) - dx), 1e-10)
    self.assertLess(np.linalg.norm(np.asarray(state.diff(x, x))), 1e-12)

  def testSO3IntegrateKeepsUnitQuaternion(self):
    state = states.StateSO3()
    x = np.asarray(state.integrate(state.rand(self.rng), self.tangent(state)))
    self.assertAlmostEqual(np.linalg.norm(x[:4]), 1., places=12)

  @parameterized.parameters('vector', 'so3')
  def testJintegrate(self, name):
    state = make_state(name)
    x = state.rand(self.rng)
    dx = self.tangent(state)
    y = np.asarray(state.integrate(x, dx))
    zero = np.zeros(state.ndx)

    # Derivative with respect to x, in the tangent frames at x and y.
    J1_fd = jacobian_fd(
        lambda d: state.diff(y, state.integrate(state.integrate(x, d), dx)),
        zero)
    J1 = state.jintegrate(x, dx, Jcomponent.FIRST)
    self.assertLess(np.linalg.norm(J1 - J1_fd), 1e-6)

    # Derivative with respect to dx.
    J2_fd = jacobian_fd(lambda d: state.diff(y, state.integrate(x, dx + d)),
                        zero)
    J2 = state.jintegrate(x, dx, Jcomponent.SECOND)
    self.assertLess(np.linalg.norm(J2 - J2_fd), 1e-6)

  @parameterized.parameters('vector', 'so3')
  def testJintegrateAssignment(self, name):
    state = make_state(name)
    x = state.rand(self.rng)
    dx = self.tangent(state)
    J = state.jintegrate(x, dx, Jcomponent.FIRST)

    out = np.ones((state.ndx, state.ndx))
    result = state.jintegrate(x, dx, Jcomponent.FIRST, AssignmentOp.SETTO,
                              out=out)
    self.assertIs(result, out)
    self.assertTrue(np.allclose(out, J))

    out = np.ones((state.ndx, state.ndx))
    state.jintegrate(x, dx, Jcomponent.FIRST, AssignmentOp.ADDTO, out=out)
    self.assertTrue(np.allclose(out, J + 1.))

  @parameterized.parameters('vector', 'so3')
  def testJintegrateTransport(self, name):
    state = make_state(name)
    x = state.rand(self.rng)
    dx = self.tangent(state)
    M = self.rng.standard_normal((state.ndx, 3))
    for component in (Jcomponent.FIRST, Jcomponent.SECOND):
      expected = state.jintegrate(x, dx, component) @ M
      J = M.copy()
      result = state.jintegrate_transport(x, dx, J, component)
      self.assertIs(result, J)
      self.assertLess(np.linalg.norm(J - expected), 1e-12)

  def testVectorJacobiansAreIdentity(self):
    state = states.StateVector(4)
    x, dx = state.rand(self.rng), self.tangent(state)
    for component in (Jcomponent.FIRST, Jcomponent.SECOND):
      self.assertTrue(
          np.array_equal(state.jintegrate(x, dx, component), np.eye(4)))
    self.assertTrue(
        np.array_equal(state.jdiff(x, x + dx, Jcomponent.FIRST), -np.eye(4)))
    self.assertTrue(
        np.array_equal(state.jdiff(x, x + dx, Jcomponent.SECOND), np.eye(4)))

  @parameterized.parameters('vector', 'so3')
  def testJdiff(self, name):
    state = make_state(name)
    x0 = state.rand(self.rng)
    x1 = np.asarray(state.integrate(x0, self.tangent(state)))
    dx = np.asarray(state.diff(x0, x1))
    zero = np.zeros(state.ndx)

    J0_fd = jacobian_fd(
        lambda d: state.diff(state.integrate(x0, d), x1) - dx, zero)
    J1_fd = jacobian_fd(
        lambda d: state.diff(x0, state.integrate(x1, d)) - dx, zero)
    self.assertLess(
        np.linalg.norm(state.jdiff(x0, x1, Jcomponent.FIRST) - J0_fd), 1e-6)
    self.assertLess(
        np.linalg.norm(state.jdiff(x0, x1, Jcomponent.SECOND) - J1_fd), 1e-6)

  def testSO3IntegrateDifferentiableAtZero(self):
    state = states.StateSO3()
    x = state.zero()
    J = jax.jacobian(state.integrate, argnums=1)(x, jnp.zeros(state.ndx))
    self.assertTrue(np.all(np.isfinite(J)))
    # d q / d dtheta at the identity is half the identity on the vector part.
    self.assertLess(np.linalg.norm(J[:3, :3] - 0.5 * np.eye(3)), 1e-12)

  def testQuaternionHelpers(self):
    w = np.array([0.3, -0.2, 0.5])
    q = np.asarray(states.quat_exp(w))
    self.assertLess(np.linalg.norm(np.asarray(states.quat_log(q)) - w), 1e-12)
    self.assertLess(np.linalg.norm(np.asarray(states.quat_log(-q)) - w), 1e-12)
    qi = np.asarray(states.quat_multiply(q, states.quat_conjugate(q)))
    self.assertLess(np.linalg.norm(qi - np.array([0., 0., 0., 1.])), 1e-12)
    R = states.rotation_matrix(w)
    self.assertLess(np.linalg.norm(R.T @ R - np.eye(3)), 1e-12)
    v = np.array([1., 2., 3.])
    self.assertLess(
        np.linalg.norm(states.skew(w) @ v - np.cross(w, v)), 1e-12)

  @parameterized.parameters('vector', 'so3')
  def testWrongSizesRaise(self, name):
    state = make_state(name)
    x = state.rand(self.rng)
    dx = self.tangent(state)
    with self.assertRaises(ValueError):
      state.jintegrate(x[:-1], dx)
    with self.assertRaises(ValueError):
      state.jintegrate(x, dx[:-1])
    with self.assertRaises(ValueError):
      state.jintegrate(x, dx, Jcomponent.FIRST, AssignmentOp.SETTO,
                       out=np.zeros((state.ndx, state.ndx + 1)))
    with self.assertRaises(ValueError):
      state.jintegrate(x, dx, Jcomponent.FIRST, AssignmentOp.ADDTO)
    with self.assertRaises(ValueError):
      state.jintegrate(x, dx, 'first')
    with self.assertRaises(ValueError):
      state.jintegrate_transport(x, dx, np.zeros((state.ndx + 1, 2)))
    with self.assertRaises(ValueError):
      state.jdiff(x, x[:-1])

  @parameterized.parameters('vector', 'so3')
  def testJintegrateTransportRejectsWrongRows(self, name):
    state = make_state(name)
    x = state.rand(self.rng)
    dx = self.tangent(state)
    for J in (np.zeros((state.ndx + 1, 2)), np.zeros((state.ndx - 1, 2)),
              np.zeros(state.ndx)):
      with self.assertRaises(ValueError):
        state.jintegrate_transport(x, dx, J)

  def testOddTangentDimensionRaises(self):
    with self.assertRaises(ValueError):
      states.StateVector(3)

  def testStr(self):
    self.assertEqual(str(states.StateSO3()), 'StateSO3 {nx=7, ndx=6}')


if __name__ == '__main__':
  absltest.main()
